"""GitHub API client helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

import httpx

from pipeline_status.logger import get_logger

if TYPE_CHECKING:
    from pipeline_status.github_auth import GitHubAppAuth

logger = get_logger()


class GitHubAPIError(RuntimeError):
    """Raised when a GitHub API request fails."""

    def __init__(self, message: str, status_code: int, response_body: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class NotFoundError(GitHubAPIError):
    """The requested resource does not exist (HTTP 404)."""


class GitHubPermissionError(GitHubAPIError):
    """GitHub rejected the credentials or their permissions (HTTP 401/403)."""


class InstallationNotFoundError(GitHubAPIError):
    """The GitHub App is not installed on the target repository."""


class UpstreamTransientError(GitHubAPIError):
    """Any other upstream failure: 5xx, rate limits, timeouts, broken payloads."""


DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
DEFAULT_API_VERSION = "2022-11-28"
DEFAULT_USER_AGENT = "PipelineStatus/1.0"

CHECK_RUNS_PAGE_SIZE = 50
COMMENTS_PAGE_SIZE = 15
DEPLOYMENTS_PAGE_SIZE = 5


def build_http_client(base_url: str, *, timeout: float = 10.0, user_agent: str = DEFAULT_USER_AGENT) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url.rstrip("/"),
        timeout=timeout,
        headers={
            "User-Agent": user_agent,
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        },
    )


def _error_detail(response: httpx.Response) -> Any | None:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def raise_for_github_status(response: httpx.Response, url: str) -> None:
    """Translate an error response into the matching GitHubAPIError subclass."""

    if response.status_code < 400:
        return
    detail = _error_detail(response)
    message = f"GitHub API request to {url} failed with status {response.status_code}."
    if isinstance(detail, dict) and detail.get("message"):
        message = f"{message} {detail['message']}"
    if response.status_code == 404:
        raise NotFoundError(message, response.status_code, detail)
    if response.status_code in (401, 403):
        raise GitHubPermissionError(message, response.status_code, detail)
    raise UpstreamTransientError(message, response.status_code, detail)


async def send_raw_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: Dict[str, str] | None = None,
    params: Dict[str, Any] | None = None,
    json: Any | None = None,
) -> httpx.Response:
    """Issue a request and return the successful response."""

    try:
        response = await client.request(method, url, headers=headers, params=params, json=json)
    except httpx.TimeoutException as exc:
        raise UpstreamTransientError(f"GitHub API request to {url} timed out.", 504) from exc
    except httpx.HTTPError as exc:
        raise UpstreamTransientError(f"GitHub API request to {url} failed: {exc}", 502) from exc

    raise_for_github_status(response, url)
    return response


def decode_json(response: httpx.Response, url: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamTransientError(
            f"GitHub API returned invalid JSON for {url}.",
            response.status_code,
            response.text,
        ) from exc


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: Dict[str, str] | None = None,
    params: Dict[str, Any] | None = None,
    json: Any | None = None,
) -> Any:
    """Issue a request and return the decoded JSON body."""

    response = await send_raw_request(client, method, url, headers=headers, params=params, json=json)
    return decode_json(response, url)


def last_page_number(response: httpx.Response) -> int:
    """Read the ``rel="last"`` page from a paginated response's Link header."""

    last_url = response.links.get("last", {}).get("url")
    if not last_url:
        return 1
    try:
        return max(int(httpx.URL(last_url).params.get("page", "1")), 1)
    except ValueError:
        return 1


class GitHubRepositoryClient:
    """Read-only, installation-scoped access to a single repository."""

    def __init__(
        self,
        *,
        owner: str,
        repo: str,
        auth: "GitHubAppAuth",
        client: httpx.AsyncClient,
        owns_client: bool = False,
    ) -> None:
        self._owner = owner
        self._repo = repo
        self._auth = auth
        self._client = client
        self._owns_client = owns_client

    @property
    def full_name(self) -> str:
        return f"{self._owner}/{self._repo}"

    async def _authorized_get(self, url: str, params: Dict[str, Any] | None) -> httpx.Response:
        token = await self._auth.get_token()
        return await send_raw_request(
            self._client, "GET", url, headers={"Authorization": f"Bearer {token.token}"}, params=params
        )

    async def _get_response(self, path: str, *, params: Dict[str, Any] | None = None) -> httpx.Response:
        url = f"/repos/{self._owner}/{self._repo}{path}"
        try:
            return await self._authorized_get(url, params)
        except GitHubPermissionError as exc:
            if exc.status_code != 401:
                raise
            # A revoked installation token is re-minted once; a second 401 propagates.
            logger.warning(f"Installation token rejected for {url}; minting a new one")
            self._auth.invalidate_token()
            return await self._authorized_get(url, params)

    async def _get(self, path: str, *, params: Dict[str, Any] | None = None) -> Any:
        response = await self._get_response(path, params=params)
        return decode_json(response, path)

    async def _get_list(self, path: str, *, params: Dict[str, Any]) -> tuple[List[Dict[str, Any]], int]:
        response = await self._get_response(path, params=params)
        data = decode_json(response, path)
        if not isinstance(data, list):
            raise UpstreamTransientError(f"Unexpected response while listing {path}.", 200, data)
        return data, last_page_number(response)

    async def get_pull_request(self, pull_number: int) -> Dict[str, Any]:
        return await self._get(f"/pulls/{pull_number}")

    async def list_check_runs(self, ref: str) -> List[Dict[str, Any]]:
        data = await self._get(f"/commits/{ref}/check-runs", params={"per_page": CHECK_RUNS_PAGE_SIZE})
        runs = data.get("check_runs") if isinstance(data, dict) else None
        if not isinstance(runs, list):
            raise UpstreamTransientError("Unexpected response while listing check runs.", 200, data)
        return runs

    async def list_issue_comments(self, issue_number: int) -> List[Dict[str, Any]]:
        """Return the newest ``COMMENTS_PAGE_SIZE`` comments, newest first.

        The per-issue listing is always oldest first, so the newest comments
        live on the last page (plus the one before it when the last is short).
        """

        path = f"/issues/{issue_number}/comments"
        comments, last_page = await self._get_list(path, params={"per_page": COMMENTS_PAGE_SIZE})
        if last_page > 1:
            comments, _ = await self._get_list(path, params={"per_page": COMMENTS_PAGE_SIZE, "page": last_page})
            if len(comments) < COMMENTS_PAGE_SIZE:
                previous, _ = await self._get_list(
                    path, params={"per_page": COMMENTS_PAGE_SIZE, "page": last_page - 1}
                )
                comments = previous + comments

        newest_first = sorted(comments, key=lambda comment: comment.get("created_at") or "", reverse=True)
        return newest_first[:COMMENTS_PAGE_SIZE]

    async def get_file_content(self, path: str, ref: str) -> Dict[str, Any]:
        return await self._get(f"/contents/{path}", params={"ref": ref})

    async def list_deployments(
        self, *, sha: str | None = None, ref: str | None = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": DEPLOYMENTS_PAGE_SIZE}
        if sha:
            params["sha"] = sha
        if ref:
            params["ref"] = ref
        data, _ = await self._get_list("/deployments", params=params)
        return data

    async def list_deployment_statuses(self, deployment_id: int) -> List[Dict[str, Any]]:
        data, _ = await self._get_list(
            f"/deployments/{deployment_id}/statuses",
            params={"per_page": DEPLOYMENTS_PAGE_SIZE},
        )
        return data

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
