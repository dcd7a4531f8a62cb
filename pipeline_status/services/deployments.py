"""Preview deployment discovery.

Sources are tried in order, stopping at the first URL found:

1. a successful preview-deploy check run whose output mentions a preview URL;
2. a comment from the deploy-preview bot that embeds a preview URL;
3. the deployments API, restricted to preview / pull-request environments.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Sequence

from pipeline_status.github_client import GitHubAPIError, GitHubRepositoryClient
from pipeline_status.logger import get_logger, log_timing, log_with_context
from pipeline_status.models.pipeline import CheckRun, IssueComment, PreviewDeployment

logger = get_logger()

PREVIEW_URL_PATTERN = re.compile(r"https://deploy-preview-\d+--[a-zA-Z0-9-]+\.netlify\.app")
SCREENSHOT_URL_PATTERN = re.compile(r"https://i\.imgur\.com/[a-zA-Z0-9]+\.(?:png|jpg|jpeg|gif)", re.IGNORECASE)
DEPLOY_BOT_MARKER = "netlify"
DEPLOY_COMMENT_MARKER = "Deploy Preview"
PREVIEW_ENVIRONMENT_HINTS = ("preview", "pull-request", "pull request", "pull_request")


def is_preview_check(check: CheckRun) -> bool:
    name = check.name.lower()
    return ("netlify" in name and "deploy" in name) or "preview" in name


def is_preview_environment(environment: str | None) -> bool:
    if not environment:
        return False
    lowered = environment.lower()
    return any(hint in lowered for hint in PREVIEW_ENVIRONMENT_HINTS)


def find_screenshot_url(comments: Sequence[IssueComment]) -> str | None:
    for comment in comments:
        match = SCREENSHOT_URL_PATTERN.search(comment.body)
        if match:
            return match.group(0)
    return None


def preview_url_from_checks(checks: Sequence[CheckRun]) -> tuple[str | None, bool]:
    """Return (url, any preview check succeeded)."""

    succeeded = False
    for check in checks:
        if not is_preview_check(check) or check.conclusion != "success":
            continue
        succeeded = True
        match = PREVIEW_URL_PATTERN.search(check.output_summary or "")
        if match:
            return match.group(0), True
    return None, succeeded


def preview_url_from_comments(comments: Sequence[IssueComment]) -> str | None:
    for comment in comments:
        if DEPLOY_BOT_MARKER not in comment.author_login.lower():
            continue
        if DEPLOY_COMMENT_MARKER not in comment.body:
            continue
        match = PREVIEW_URL_PATTERN.search(comment.body)
        if match:
            return match.group(0)
    return None


class DeploymentResolver:
    def __init__(self, client: GitHubRepositoryClient) -> None:
        self._client = client

    async def _preview_url_from_deployments(
        self, head_sha: str, head_branch: str | None
    ) -> tuple[str | None, bool]:
        """Return (url, lookup failed); API errors are logged and never raised."""

        ctx_logger = log_with_context(logger, head_sha=head_sha[:7], branch=head_branch)
        try:
            return await self._search_deployments(ctx_logger, head_sha, head_branch), False
        except GitHubAPIError as exc:
            ctx_logger.warning(
                f"Deployments lookup failed (status={exc.status_code}); continuing without a preview URL: {exc}"
            )
            return None, True

    async def _search_deployments(self, ctx_logger, head_sha: str, head_branch: str | None) -> str | None:
        queries: List[Dict[str, str]] = [{"sha": head_sha}]
        if head_branch:
            queries.append({"ref": head_branch})

        seen: set[int] = set()
        for query in queries:
            with log_timing(ctx_logger, "list_deployments", **query):
                deployments = await self._client.list_deployments(**query)
            candidates = [
                deployment
                for deployment in deployments
                if deployment.get("id") is not None
                and deployment["id"] not in seen
                and is_preview_environment(deployment.get("environment"))
            ]
            candidates.sort(key=lambda deployment: deployment.get("created_at") or "", reverse=True)
            for deployment in candidates:
                seen.add(deployment["id"])
                url = await self._successful_environment_url(deployment)
                if url:
                    return url
        return None

    async def _successful_environment_url(self, deployment: Dict[str, Any]) -> str | None:
        statuses = await self._client.list_deployment_statuses(deployment["id"])
        for status in statuses:
            if status.get("state") == "success" and status.get("environment_url"):
                return status["environment_url"]
        return None

    async def resolve(
        self,
        checks: Sequence[CheckRun],
        comments: Sequence[IssueComment],
        *,
        head_sha: str,
        head_branch: str | None,
    ) -> PreviewDeployment:
        screenshot_url = find_screenshot_url(comments)

        url, check_succeeded = preview_url_from_checks(checks)
        if url:
            return PreviewDeployment(url=url, succeeded=True, screenshot_url=screenshot_url, source="check_run")

        url = preview_url_from_comments(comments)
        source = "comment"
        lookup_failed = False
        if not url:
            url, lookup_failed = await self._preview_url_from_deployments(head_sha, head_branch)
            source = "deployments_api"

        if not url:
            return PreviewDeployment(
                succeeded=check_succeeded, screenshot_url=screenshot_url, lookup_failed=lookup_failed
            )

        if not check_succeeded:
            logger.debug(f"Preview URL found via {source} without a successful deploy check; marking as succeeded")
        return PreviewDeployment(url=url, succeeded=True, screenshot_url=screenshot_url, source=source)
