import base64
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

os.environ.setdefault("STATUS_LOG_TO_FILE", "false")
os.environ.setdefault("APP_LOG_LEVEL", "WARNING")

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from pipeline_status.config import AppCredentials, BotUsernames, Settings
from pipeline_status.github_auth import GitHubAppAuth, InstallationToken, TokenCache
from pipeline_status.github_client import GitHubRepositoryClient
from pipeline_status.services.status_service import PipelineStatusService

OWNER = "acme"
REPO = "tools"
BASE_URL = "https://api.github.test"
HEAD_SHA = "0123456789abcdef0123456789abcdef01234567"
BRANCH = "feat/gen-json-formatter-2"
METADATA_PATH = "app/tool/json-formatter/tool-generation-info.json"


def make_check_run(
    name: str,
    status: str = "completed",
    conclusion: str | None = "success",
    *,
    started_at: str | None = "2024-05-01T10:00:00Z",
    completed_at: str | None = "2024-05-01T10:05:00Z",
    run_id: int = 1,
    summary: str | None = None,
) -> Dict[str, Any]:
    return {
        "id": run_id,
        "name": name,
        "status": status,
        "conclusion": conclusion if status == "completed" else None,
        "html_url": f"https://github.com/{OWNER}/{REPO}/runs/{run_id}",
        "started_at": started_at,
        "completed_at": completed_at if status == "completed" else None,
        "output": {"title": None, "summary": summary, "text": None},
    }


def make_comment(login: str, body: str, created_at: str = "2024-05-01T11:00:00Z", comment_id: int = 1) -> Dict[str, Any]:
    return {
        "id": comment_id,
        "user": {"login": login, "type": "Bot"},
        "body": body,
        "created_at": created_at,
        "html_url": f"https://github.com/{OWNER}/{REPO}/pull/7#issuecomment-{comment_id}",
    }


def make_pull_request(
    number: int = 7,
    *,
    state: str = "open",
    merged: bool = False,
    head_sha: str = HEAD_SHA,
    branch: str = BRANCH,
) -> Dict[str, Any]:
    return {
        "number": number,
        "title": "Add JSON formatter tool",
        "state": state,
        "merged": merged,
        "merged_at": "2024-05-02T09:00:00Z" if merged else None,
        "html_url": f"https://github.com/{OWNER}/{REPO}/pull/{number}",
        "head": {"sha": head_sha, "ref": branch},
        "base": {"sha": "f" * 40, "ref": "main"},
    }


def encode_file(content: str) -> Dict[str, Any]:
    return {"type": "file", "encoding": "base64", "content": base64.b64encode(content.encode("utf-8")).decode("ascii")}


class FakeGitHub:
    """In-memory GitHub REST API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.installation_id: int | None = 99
        self.pull_requests: Dict[int, Dict[str, Any]] = {}
        self.check_runs: Dict[str, List[Dict[str, Any]]] = {}
        self.comments: Dict[int, List[Dict[str, Any]]] = {}
        self.files: Dict[str, Dict[str, Any]] = {}
        self.deployments: List[Dict[str, Any]] = []
        self.deployment_statuses: Dict[int, List[Dict[str, Any]]] = {}
        self.failures: Dict[str, int] = {}
        self.token_lifetime = timedelta(hours=1)
        self.minted_tokens = 0
        self.requests: List[httpx.Request] = []
        self.revoked_tokens: set[str] = set()

    def _json(self, status_code: int, payload: Any) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    def paths_requested(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def _comment_page(self, request: httpx.Request, comments: List[Dict[str, Any]]) -> httpx.Response:
        """Serve issue comments the way GitHub does: oldest first, paged, with a Link header."""

        per_page = int(request.url.params.get("per_page", "30"))
        page = int(request.url.params.get("page", "1"))
        ordered = sorted(comments, key=lambda comment: comment["created_at"])
        last_page = max((len(ordered) + per_page - 1) // per_page, 1)
        headers = {}
        if last_page > 1:
            last_url = request.url.copy_merge_params({"page": last_page})
            headers["Link"] = f'<{last_url}>; rel="last"'
        chunk = ordered[(page - 1) * per_page:page * per_page]
        return httpx.Response(200, json=chunk, headers=headers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        for fragment, status_code in self.failures.items():
            if fragment in path:
                return self._json(status_code, {"message": f"simulated failure for {fragment}"})

        authorization = request.headers.get("Authorization", "")
        if authorization.removeprefix("Bearer ") in self.revoked_tokens:
            return self._json(401, {"message": "Bad credentials"})

        repo_prefix = f"/repos/{OWNER}/{REPO}"
        if path == f"{repo_prefix}/installation":
            if self.installation_id is None:
                return self._json(404, {"message": "Not Found"})
            return self._json(200, {"id": self.installation_id})

        match = re.fullmatch(r"/app/installations/(\d+)/access_tokens", path)
        if match and request.method == "POST":
            self.minted_tokens += 1
            expires_at = datetime.now(timezone.utc) + self.token_lifetime
            return self._json(
                201,
                {
                    "token": f"ghs_token_{self.minted_tokens}",
                    "expires_at": expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "permissions": {"checks": "read"},
                },
            )

        match = re.fullmatch(rf"{repo_prefix}/pulls/(\d+)", path)
        if match:
            pr = self.pull_requests.get(int(match.group(1)))
            return self._json(200, pr) if pr else self._json(404, {"message": "Not Found"})

        match = re.fullmatch(rf"{repo_prefix}/commits/([0-9a-f]+)/check-runs", path)
        if match:
            runs = self.check_runs.get(match.group(1), [])
            return self._json(200, {"total_count": len(runs), "check_runs": runs})

        match = re.fullmatch(rf"{repo_prefix}/issues/(\d+)/comments", path)
        if match:
            return self._comment_page(request, self.comments.get(int(match.group(1)), []))

        if path.startswith(f"{repo_prefix}/contents/"):
            file_path = path[len(f"{repo_prefix}/contents/"):]
            payload = self.files.get(file_path)
            return self._json(200, payload) if payload else self._json(404, {"message": "Not Found"})

        match = re.fullmatch(rf"{repo_prefix}/deployments/(\d+)/statuses", path)
        if match:
            return self._json(200, self.deployment_statuses.get(int(match.group(1)), []))

        if path == f"{repo_prefix}/deployments":
            sha = request.url.params.get("sha")
            ref = request.url.params.get("ref")
            matching = [
                deployment
                for deployment in self.deployments
                if (sha is None or deployment.get("sha") == sha) and (ref is None or deployment.get("ref") == ref)
            ]
            return self._json(200, matching)

        return self._json(404, {"message": f"No route for {request.method} {path}"})


class StubAuth:
    def __init__(self) -> None:
        self.calls = 0
        self.invalidations = 0

    async def get_token(self) -> InstallationToken:
        self.calls += 1
        return InstallationToken(token="stub-token", expires_at=datetime.now(timezone.utc) + timedelta(hours=1))

    def invalidate_token(self) -> None:
        self.invalidations += 1


@pytest.fixture(scope="session")
def private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


@pytest.fixture(scope="session")
def private_key_base64(private_key_pem: str) -> str:
    return base64.b64encode(private_key_pem.encode("utf-8")).decode("ascii")


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def http_client(fake_github: FakeGitHub) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(fake_github.handler))


@pytest.fixture
def settings(private_key_base64: str) -> Settings:
    return Settings(
        github_api_base_url=BASE_URL,
        repo_owner=OWNER,
        repo_name=REPO,
        github_app_id=12345,
        github_private_key_base64=private_key_base64,
        bot_usernames=BotUsernames(
            vpr="oet-ci-bot[bot]",
            adm="ai-dependency-manager[bot]",
            alf="ai-lint-fixer[bot]",
            pr_creator="oet-bot[bot]",
        ),
    )


@pytest.fixture
def repo_client(http_client: httpx.AsyncClient) -> GitHubRepositoryClient:
    return GitHubRepositoryClient(owner=OWNER, repo=REPO, auth=StubAuth(), client=http_client)


@pytest.fixture
def app_auth(settings: Settings, http_client: httpx.AsyncClient) -> GitHubAppAuth:
    return GitHubAppAuth(
        credentials=settings.require_app_credentials(),
        owner=OWNER,
        repo=REPO,
        client=http_client,
        cache=TokenCache(),
    )


@pytest.fixture
def status_service(settings: Settings, app_auth: GitHubAppAuth, http_client: httpx.AsyncClient) -> PipelineStatusService:
    client = GitHubRepositoryClient(owner=OWNER, repo=REPO, auth=app_auth, client=http_client)
    return PipelineStatusService(client, settings)


@pytest.fixture
def credentials(private_key_base64: str) -> AppCredentials:
    return AppCredentials(github_app_id=12345, github_private_key_base64=private_key_base64)
