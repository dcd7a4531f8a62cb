"""Builds the pipeline status document for one pull request."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Dict, List, Tuple

from pipeline_status.config import Settings
from pipeline_status.github_client import GitHubRepositoryClient, UpstreamTransientError
from pipeline_status.logger import get_logger, log_success, log_timing, log_with_context
from pipeline_status.models.pipeline import (
    CheckRun,
    GenerationMetadata,
    OverallCheckStatus,
    PipelineStatus,
    PullRequestInfo,
)
from pipeline_status.services.check_runs import CheckRunAggregator
from pipeline_status.services.comment_classifier import CommentClassification, CommentClassifier
from pipeline_status.services.deployments import DeploymentResolver
from pipeline_status.services.generation_metadata import GenerationMetadataLoader
from pipeline_status.services.synthesizer import PipelineSnapshot, synthesize
from pipeline_status.utils.timestamps import utc_now_iso

logger = get_logger()


async def gather_cancelling_on_error(*coros: Awaitable[Any], return_exceptions: bool = False) -> List[Any]:
    """``asyncio.gather`` that cancels and reaps the remaining tasks when one fails."""

    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _serialize_pull_request(data: Dict[str, Any], pr_number: int) -> PullRequestInfo:
    head = data.get("head") or {}
    head_sha = head.get("sha")
    if not head_sha:
        raise UpstreamTransientError(f"Pull request #{pr_number} payload is missing its head commit.", 200, data)
    state = "closed" if data.get("state") == "closed" else "open"
    return PullRequestInfo(
        number=pr_number,
        url=data.get("html_url") or "",
        state=state,
        merged=bool(data.get("merged") or data.get("merged_at")),
        head_sha=head_sha,
        head_branch=head.get("ref") or "",
        title=data.get("title"),
    )


class PipelineStatusService:
    """Fetches every signal for a pull request and synthesizes its status."""

    def __init__(self, client: GitHubRepositoryClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings
        self._checks = CheckRunAggregator(client)
        self._comments = CommentClassifier(client, settings.bot_usernames)
        self._metadata = GenerationMetadataLoader(
            client,
            branch_prefix=settings.generation_branch_prefix,
            path_template=settings.generation_metadata_path,
            default_branch=settings.default_branch,
        )
        self._deployments = DeploymentResolver(client)

    async def _gather_signals(
        self, pr: PullRequestInfo
    ) -> Tuple[Tuple[List[CheckRun], OverallCheckStatus], GenerationMetadata, CommentClassification, bool]:
        checks_task = self._checks.aggregate(pr.head_sha, pr.state)
        metadata_task = self._metadata.load(pr.head_branch)
        comments_task = self._comments.classify(pr.number)

        if not self._settings.degrade_on_partial_failure:
            checks, metadata, comments = await gather_cancelling_on_error(
                checks_task, metadata_task, comments_task
            )
            return checks, metadata, comments, False

        checks, metadata, comments = await gather_cancelling_on_error(
            checks_task, metadata_task, comments_task, return_exceptions=True
        )
        if isinstance(checks, BaseException):
            raise checks

        ctx_logger = log_with_context(logger, pr_number=pr.number)
        degraded = False
        if isinstance(metadata, BaseException):
            if not isinstance(metadata, Exception):
                raise metadata
            ctx_logger.warning(f"Generation metadata unavailable, continuing without it: {metadata}")
            metadata = GenerationMetadata.not_found()
            degraded = True
        if isinstance(comments, BaseException):
            if not isinstance(comments, Exception):
                raise comments
            ctx_logger.warning(f"PR comments unavailable, continuing without them: {comments}")
            comments = CommentClassification()
            degraded = True
        return checks, metadata, comments, degraded

    async def build_status(self, pr_number: int, *, polling_attempt: int = 0) -> PipelineStatus:
        ctx_logger = log_with_context(logger, pr_number=pr_number, repository=self._client.full_name)

        with log_timing(ctx_logger, "get_pull_request"):
            pr = _serialize_pull_request(await self._client.get_pull_request(pr_number), pr_number)
        ctx_logger.info(f"Head SHA: {pr.head_sha[:7]}, Branch: {pr.head_branch}, State: {pr.state}")

        (checks, overall), metadata, comments, degraded = await self._gather_signals(pr)

        preview = await self._deployments.resolve(
            checks, comments.comments, head_sha=pr.head_sha, head_branch=pr.head_branch
        )
        if preview.lookup_failed and self._settings.degrade_on_partial_failure:
            degraded = True

        automated_actions = synthesize(
            PipelineSnapshot(
                pull_request=pr,
                checks=checks,
                overall_check_status=overall,
                metadata=metadata,
                latest_comment=comments.latest,
                polling_attempt=polling_attempt,
                max_polling_attempts=self._settings.max_polling_attempts,
            )
        )

        log_success(
            logger,
            f"PR #{pr_number}: {automated_actions.pipeline_state.value} "
            f"(checks={overall}, next={automated_actions.next_expected_action}, "
            f"poll={automated_actions.should_continue_polling})",
            pr_number=pr_number,
        )

        return PipelineStatus(
            pr_url=pr.url,
            pr_number=pr.number,
            head_sha=pr.head_sha,
            head_branch=pr.head_branch,
            pr_state=pr.state,
            is_merged=pr.merged,
            checks=checks,
            overall_check_status=overall,
            preview_url=preview.url,
            preview_deploy_succeeded=preview.succeeded,
            screenshot_url=preview.screenshot_url,
            generation_metadata=metadata,
            automated_actions=automated_actions,
            degraded=degraded,
            last_updated=utc_now_iso(),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
