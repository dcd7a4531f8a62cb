"""Pull request pipeline status endpoint."""

from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from pipeline_status.config import ConfigurationError
from pipeline_status.dependencies import status_service_dependency
from pipeline_status.github_client import (
    GitHubAPIError,
    GitHubPermissionError,
    InstallationNotFoundError,
    NotFoundError,
)
from pipeline_status.logger import get_logger, log_failure, log_with_context
from pipeline_status.services.status_service import PipelineStatusService

router = APIRouter()

logger = get_logger()


def pr_number_param(raw_value: str | None = Query(default=None, alias="prNumber")) -> int:
    if raw_value is None or not raw_value.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing prNumber query parameter.")
    try:
        value = int(raw_value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid prNumber.") from exc
    if value <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid prNumber.")
    return value


def polling_attempt_param(raw_value: str | None = Query(default=None, alias="pollingAttempt")) -> int:
    if raw_value is None or not raw_value.strip():
        return 0
    try:
        value = int(raw_value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid pollingAttempt.") from exc
    if value < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid pollingAttempt.")
    return value


def _error_response_for(exc: GitHubAPIError, pr_number: int) -> HTTPException:
    if isinstance(exc, InstallationNotFoundError):
        code = status.HTTP_403_FORBIDDEN if exc.status_code == 403 else status.HTTP_500_INTERNAL_SERVER_ERROR
        return HTTPException(status_code=code, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"PR #{pr_number} not found. {exc}")
    if isinstance(exc, GitHubPermissionError):
        return HTTPException(status_code=exc.status_code, detail=f"Permission issue. {exc}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/status", summary="Synthesized CI pipeline status for a pull request")
async def get_pull_request_status(
    pr_number: int = Depends(pr_number_param),
    polling_attempt: int = Depends(polling_attempt_param),
    service: PipelineStatusService = Depends(status_service_dependency),
) -> Dict[str, Any]:
    """Aggregate checks, bot comments, deployments and generation metadata for one PR."""

    start_time = time.time()
    ctx_logger = log_with_context(logger, pr_number=pr_number, polling_attempt=polling_attempt)
    ctx_logger.info("=== STATUS REQUEST RECEIVED ===")

    try:
        pipeline_status = await service.build_status(pr_number, polling_attempt=polling_attempt)
    except ConfigurationError as exc:
        log_failure(logger, "GitHub App configuration invalid", exc, pr_number=pr_number)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except GitHubAPIError as exc:
        log_failure(logger, f"GitHub API error (status={exc.status_code})", exc, pr_number=pr_number)
        raise _error_response_for(exc, pr_number) from exc
    except Exception as exc:
        log_failure(logger, "Unexpected error while building PR status", exc, pr_number=pr_number)
        logger.exception("Full exception traceback:")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch PR CI status.",
        ) from exc

    ctx_logger.info(f"Status built in {time.time() - start_time:.3f}s")
    return pipeline_status.model_dump(mode="json", by_alias=True)
