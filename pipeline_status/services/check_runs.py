"""Check run aggregation for a pull request head commit."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Tuple

from pipeline_status.github_client import GitHubRepositoryClient
from pipeline_status.logger import get_logger, log_timing, log_with_context
from pipeline_status.models.pipeline import CheckRun, OverallCheckStatus
from pipeline_status.utils.timestamps import EPOCH, parse_optional_timestamp

logger = get_logger()


def _serialize_check_run(run: Dict[str, Any]) -> CheckRun | None:
    name = run.get("name")
    if not name:
        logger.warning(f"Skipping check run without a name (id={run.get('id')})")
        return None
    output = run.get("output") or {}
    summary_parts = [part for part in (output.get("title"), output.get("summary"), output.get("text")) if part]
    return CheckRun(
        id=run.get("id"),
        name=name,
        status=run.get("status") or "queued",
        conclusion=run.get("conclusion"),
        url=run.get("html_url") or run.get("details_url"),
        started_at=run.get("started_at"),
        completed_at=run.get("completed_at"),
        output_summary="\n".join(summary_parts) or None,
    )


def _recency_key(run: CheckRun) -> Tuple[bool, datetime, int, bool, str]:
    """Most recent by completed_at, falling back to started_at; id breaks ties.

    A run with neither timestamp has only just been queued and outranks every
    timestamped run.
    """

    moment = parse_optional_timestamp(run.completed_at) or parse_optional_timestamp(run.started_at)
    return moment is None, moment or EPOCH, run.id or 0, run.status == "completed", run.conclusion or ""


def _started_key(run: CheckRun) -> Tuple[datetime, str]:
    return parse_optional_timestamp(run.started_at) or EPOCH, run.name


def collapse_check_runs(runs: Iterable[CheckRun]) -> List[CheckRun]:
    """Keep the latest run per check name, ordered by start time ascending."""

    latest: Dict[str, CheckRun] = {}
    for run in runs:
        existing = latest.get(run.name)
        if existing is None or _recency_key(run) > _recency_key(existing):
            latest[run.name] = run
    return sorted(latest.values(), key=_started_key)


def derive_overall_status(runs: List[CheckRun], pr_state: str) -> OverallCheckStatus:
    if any(run.failed for run in runs):
        return "failure"
    if runs and all(run.status == "completed" for run in runs):
        return "success"
    if runs:
        return "pending"
    if pr_state == "open":
        return "pending"
    return "error"


class CheckRunAggregator:
    def __init__(self, client: GitHubRepositoryClient) -> None:
        self._client = client

    async def aggregate(self, head_sha: str, pr_state: str) -> Tuple[List[CheckRun], OverallCheckStatus]:
        ctx_logger = log_with_context(logger, head_sha=head_sha[:7])
        with log_timing(ctx_logger, "list_check_runs"):
            raw_runs = await self._client.list_check_runs(head_sha)

        runs = [check for check in (_serialize_check_run(run) for run in raw_runs) if check is not None]
        retained = collapse_check_runs(runs)
        overall = derive_overall_status(retained, pr_state)
        ctx_logger.debug(
            f"Collapsed {len(runs)} check run(s) into {len(retained)} distinct check(s); overall={overall}"
        )
        return retained, overall
