"""FastAPI dependency factories."""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from pipeline_status.config import ConfigurationError, Settings, get_settings
from pipeline_status.github_auth import GitHubAppAuth, TokenCache
from pipeline_status.github_client import GitHubRepositoryClient, build_http_client
from pipeline_status.logger import get_logger
from pipeline_status.services.status_service import PipelineStatusService

logger = get_logger()


def build_status_service(settings: Settings) -> PipelineStatusService:
    """Wire the GitHub client, token cache and status service for ``settings``."""

    credentials = settings.require_app_credentials()
    http_client = build_http_client(settings.normalized_github_api_base_url, timeout=settings.http_timeout)
    auth = GitHubAppAuth(
        credentials=credentials,
        owner=settings.repo_owner,
        repo=settings.repo_name,
        client=http_client,
        cache=TokenCache(),
    )
    client = GitHubRepositoryClient(
        owner=settings.repo_owner,
        repo=settings.repo_name,
        auth=auth,
        client=http_client,
        owns_client=True,
    )
    return PipelineStatusService(client, settings)


@lru_cache(maxsize=1)
def _status_service_factory() -> PipelineStatusService:
    return build_status_service(get_settings())


def status_service_dependency() -> PipelineStatusService:
    """Provide the process-wide status service; its token cache is shared across requests."""

    try:
        return _status_service_factory()
    except ConfigurationError as exc:
        logger.error(f"GitHub App is not configured: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


async def close_status_service() -> None:
    """Close the cached service's HTTP client, if one was created."""

    if _status_service_factory.cache_info().currsize:
        await _status_service_factory().aclose()
    _status_service_factory.cache_clear()
