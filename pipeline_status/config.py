"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Final

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, ValidationError, field_validator

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class ConfigurationError(RuntimeError):
    """Raised when application configuration is invalid or incomplete."""


@dataclass(frozen=True)
class AppCredentials:
    github_app_id: int
    github_private_key_base64: str


class BotUsernames(BaseModel):
    """Logins of the automation bots taking part in the PR handoff chain."""

    vpr: str = "oet ci bot"
    adm: str = "ai dependency manager"
    alf: str = "ai lint fixer"
    pr_creator: str = "oet bot"

    @field_validator("vpr", "adm", "alf", "pr_creator")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.strip().lower()


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    github_api_base_url: AnyHttpUrl = "https://api.github.com"
    repo_owner: str = "Online-Everything-Tool"
    repo_name: str = "oet"
    default_branch: str = "main"
    github_app_id: int | None = None
    github_private_key_base64: str | None = None
    bot_usernames: BotUsernames = BotUsernames()
    http_timeout: float = 10.0
    max_polling_attempts: int = 360
    degrade_on_partial_failure: bool = False
    generation_branch_prefix: str = "feat/gen-"
    generation_metadata_path: str = "app/tool/{directive}/tool-generation-info.json"

    @property
    def normalized_github_api_base_url(self) -> str:
        """Return the GitHub API base URL without a trailing slash."""
        return str(self.github_api_base_url).rstrip("/")

    @property
    def repository(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    def require_app_credentials(self) -> AppCredentials:
        """Ensure the GitHub App identity is configured and return it."""

        missing = []
        if self.github_app_id is None:
            missing.append("GITHUB_APP_ID")
        if not self.github_private_key_base64:
            missing.append("GITHUB_PRIVATE_KEY_BASE64")

        if missing:
            missing_vars = ", ".join(missing)
            raise ConfigurationError(
                "Server configuration error: GitHub App credentials missing. "
                f"Missing environment variables: {missing_vars}."
            )

        return AppCredentials(
            github_app_id=int(self.github_app_id),
            github_private_key_base64=self.github_private_key_base64,
        )


_TRUE_VALUES: Final[set[str]] = {"1", "true", "yes", "on"}


def _parse_bool_env(raw_value: str | None, *, default: bool = False) -> bool:
    """Convert an environment variable string to a boolean value."""

    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUE_VALUES


def _parse_number_env(name: str, cast: type, default: int | float) -> int | float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = cast(raw_value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for {name}. It must be a number.") from exc
    if value <= 0:
        raise ConfigurationError(f"Invalid value for {name}. It must be positive.")
    return value


def _build_settings() -> Settings:
    github_app_id = os.getenv("GITHUB_APP_ID")

    try:
        github_app_id_value: int | None
        if github_app_id and github_app_id.strip():
            github_app_id_value = int(github_app_id)
        else:
            github_app_id_value = None
    except ValueError as exc:
        raise ConfigurationError("Invalid value for GITHUB_APP_ID. It must be an integer.") from exc

    bot_defaults = BotUsernames()
    try:
        return Settings(
            github_api_base_url=os.getenv("GITHUB_API_BASE_URL") or "https://api.github.com",
            repo_owner=os.getenv("GITHUB_REPO_OWNER") or "Online-Everything-Tool",
            repo_name=os.getenv("GITHUB_REPO_NAME") or "oet",
            default_branch=os.getenv("GITHUB_DEFAULT_BRANCH") or "main",
            github_app_id=github_app_id_value,
            github_private_key_base64=os.getenv("GITHUB_PRIVATE_KEY_BASE64"),
            bot_usernames=BotUsernames(
                vpr=os.getenv("GITHUB_VPR_BOT_USERNAME") or bot_defaults.vpr,
                adm=os.getenv("GITHUB_ADM_BOT_USERNAME") or bot_defaults.adm,
                alf=os.getenv("GITHUB_ALF_BOT_USERNAME") or bot_defaults.alf,
                pr_creator=os.getenv("GITHUB_PR_CREATOR_BOT_USERNAME") or bot_defaults.pr_creator,
            ),
            http_timeout=_parse_number_env("GITHUB_HTTP_TIMEOUT", float, 10.0),
            max_polling_attempts=_parse_number_env("STATUS_MAX_POLLING_ATTEMPTS", int, 360),
            degrade_on_partial_failure=_parse_bool_env(
                os.getenv("STATUS_DEGRADE_ON_PARTIAL_FAILURE"), default=False
            ),
            generation_branch_prefix=os.getenv("GENERATION_BRANCH_PREFIX") or "feat/gen-",
            generation_metadata_path=(
                os.getenv("GENERATION_METADATA_PATH")
                or "app/tool/{directive}/tool-generation-info.json"
            ),
        )
    except ValidationError as exc:
        raise ConfigurationError("Invalid application configuration.") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return _build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
