"""GitHub App authentication and the installation token cache."""

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict

import httpx
import jwt

from pipeline_status.config import AppCredentials, ConfigurationError
from pipeline_status.github_client import (
    DEFAULT_ACCEPT_HEADER,
    DEFAULT_API_VERSION,
    GitHubAPIError,
    InstallationNotFoundError,
    NotFoundError,
    UpstreamTransientError,
    send_request,
)
from pipeline_status.logger import get_logger, log_with_context
from pipeline_status.utils.timestamps import parse_github_timestamp

logger = get_logger()

PEM_PREFIX = "-----BEGIN"


@dataclass
class InstallationToken:
    token: str
    expires_at: datetime
    permissions: Dict[str, Any] | None = None

    def is_active(self, *, skew_seconds: int = 60) -> bool:
        """Return True if the token is still valid accounting for clock skew."""

        return self.expires_at - timedelta(seconds=skew_seconds) > datetime.now(timezone.utc)


class TokenCache:
    """Holds one installation token and re-mints it once it nears expiry.

    Concurrent callers share a single mint: the lock is held while the token is
    refreshed, and the cached value is re-checked after acquiring it.
    """

    def __init__(self, *, skew_seconds: int = 60) -> None:
        self._token: InstallationToken | None = None
        self._skew_seconds = skew_seconds
        self._lock = asyncio.Lock()

    def _usable(self) -> InstallationToken | None:
        if self._token is not None and self._token.is_active(skew_seconds=self._skew_seconds):
            return self._token
        return None

    async def get_or_mint(self, mint: Callable[[], Awaitable[InstallationToken]]) -> InstallationToken:
        cached = self._usable()
        if cached is not None:
            return cached
        async with self._lock:
            cached = self._usable()
            if cached is not None:
                return cached
            self._token = await mint()
            return self._token

    def invalidate(self) -> None:
        self._token = None


def decode_private_key(private_key_base64: str) -> str:
    """Decode the base64-wrapped PEM key, rejecting anything that is not PEM."""

    try:
        decoded = base64.b64decode(private_key_base64.strip(), validate=False).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise ConfigurationError("GITHUB_PRIVATE_KEY_BASE64 is not valid base64-encoded text.") from exc

    decoded = decoded.replace("\\n", "\n").strip()
    if not decoded.startswith(PEM_PREFIX):
        raise ConfigurationError("Decoded private key is invalid or not in PEM format.")
    return decoded


class GitHubAppAuth:
    """Mints installation tokens for one repository on behalf of a GitHub App."""

    def __init__(
        self,
        *,
        credentials: AppCredentials,
        owner: str,
        repo: str,
        client: httpx.AsyncClient,
        cache: TokenCache | None = None,
    ) -> None:
        self._app_id = credentials.github_app_id
        self._private_key = decode_private_key(credentials.github_private_key_base64)
        self._owner = owner
        self._repo = repo
        self._client = client
        self._cache = cache or TokenCache()
        self._installation_id: int | None = None

    def _build_jwt(self) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iat": int((now - timedelta(seconds=60)).timestamp()),
            "exp": int((now + timedelta(minutes=10)).timestamp()),
            "iss": str(self._app_id),
        }
        try:
            return jwt.encode(payload, self._private_key, algorithm="RS256")
        except Exception as exc:
            raise ConfigurationError(
                f"Failed to encode JWT: {exc}. Check that GITHUB_PRIVATE_KEY_BASE64 wraps a valid RSA private key."
            ) from exc

    def _app_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._build_jwt()}",
            "Accept": DEFAULT_ACCEPT_HEADER,
            "X-GitHub-Api-Version": DEFAULT_API_VERSION,
        }

    async def _resolve_installation_id(self) -> int:
        if self._installation_id is not None:
            return self._installation_id

        url = f"/repos/{self._owner}/{self._repo}/installation"
        try:
            data = await send_request(self._client, "GET", url, headers=self._app_headers())
        except NotFoundError as exc:
            raise InstallationNotFoundError(
                f"App installation not found or accessible for {self._owner}/{self._repo}.",
                exc.status_code,
                exc.response_body,
            ) from exc
        except GitHubAPIError as exc:
            if exc.status_code == 403:
                raise InstallationNotFoundError(
                    f"App installation not accessible for {self._owner}/{self._repo}.",
                    exc.status_code,
                    exc.response_body,
                ) from exc
            raise

        installation_id = data.get("id") if isinstance(data, dict) else None
        if not installation_id:
            raise InstallationNotFoundError(
                f"App installation ID not found for {self._owner}/{self._repo}.", 404, data
            )
        self._installation_id = int(installation_id)
        return self._installation_id

    async def _mint_token(self) -> InstallationToken:
        installation_id = await self._resolve_installation_id()
        ctx_logger = log_with_context(logger, installation_id=installation_id, repository=f"{self._owner}/{self._repo}")
        ctx_logger.info("Minting GitHub App installation token")

        data = await send_request(
            self._client,
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers=self._app_headers(),
        )
        token_value = data.get("token") if isinstance(data, dict) else None
        if not token_value:
            raise UpstreamTransientError("GitHub did not return an installation token.", 200, data)

        expires_at_raw = data.get("expires_at")
        if not expires_at_raw:
            raise UpstreamTransientError(
                "GitHub did not return an expires_at value for installation token.", 200, data
            )
        token = InstallationToken(
            token=token_value,
            expires_at=parse_github_timestamp(expires_at_raw),
            permissions=data.get("permissions"),
        )
        ctx_logger.info(f"GitHub App authentication successful (token expires {token.expires_at.isoformat()})")
        return token

    async def get_token(self) -> InstallationToken:
        return await self._cache.get_or_mint(self._mint_token)

    def invalidate_token(self) -> None:
        """Drop the cached token so the next ``get_token`` mints a fresh one."""

        self._cache.invalidate()
