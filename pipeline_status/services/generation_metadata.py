"""Generation metadata lookup on a pull request's head branch."""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, Dict

from pipeline_status.github_client import GitHubRepositoryClient, NotFoundError
from pipeline_status.logger import get_logger, log_timing, log_with_context
from pipeline_status.models.pipeline import GenerationMetadata

logger = get_logger()

_TRAILING_COUNTER = re.compile(r"-[0-9]+$")
_DEPENDENCY_STATES = {"true", "false", "absent"}


def extract_directive(branch_name: str | None, prefix: str) -> str | None:
    """``feat/gen-json-formatter-3`` -> ``json-formatter``."""

    if not branch_name or not branch_name.startswith(prefix):
        return None
    return _TRAILING_COUNTER.sub("", branch_name[len(prefix):]) or None


def parse_generation_metadata(content: Dict[str, Any]) -> GenerationMetadata:
    raw_dependencies = content.get("npmDependenciesFulfilled")
    if isinstance(raw_dependencies, bool):
        raw_dependencies = "true" if raw_dependencies else "false"
    dependencies = str(raw_dependencies).lower() if raw_dependencies is not None else "absent"
    if dependencies not in _DEPENDENCY_STATES:
        dependencies = "absent"

    lint_fixes = content.get("lintFixesAttempted")

    identified = content.get("identifiedDependencies")
    identified_names = None
    if isinstance(identified, list):
        identified_names = [
            item.get("packageName") for item in identified if isinstance(item, dict) and item.get("packageName")
        ]

    return GenerationMetadata(
        dependencies_fulfilled=dependencies,
        lint_fixes_attempted=lint_fixes if isinstance(lint_fixes, bool) else False,
        identified_dependencies=identified_names,
    )


class GenerationMetadataLoader:
    def __init__(
        self,
        client: GitHubRepositoryClient,
        *,
        branch_prefix: str,
        path_template: str,
        default_branch: str,
    ) -> None:
        self._client = client
        self._branch_prefix = branch_prefix
        self._path_template = path_template
        self._default_branch = default_branch

    async def load(self, branch_name: str | None) -> GenerationMetadata:
        ctx_logger = log_with_context(logger, branch=branch_name)
        if not branch_name or branch_name == self._default_branch:
            ctx_logger.debug("Head branch is the default branch; no generation metadata expected")
            return GenerationMetadata.not_found()

        directive = extract_directive(branch_name, self._branch_prefix)
        if not directive:
            ctx_logger.debug("Branch is not a generated-tool branch; generation metadata not applicable")
            return GenerationMetadata.not_found()

        path = self._path_template.format(directive=directive)
        try:
            with log_timing(ctx_logger, "get_generation_metadata", path=path):
                payload = await self._client.get_file_content(path, branch_name)
        except NotFoundError:
            ctx_logger.info(f"{path} not found on branch {branch_name}")
            return GenerationMetadata.not_found()

        if not isinstance(payload, dict) or payload.get("encoding") != "base64" or not payload.get("content"):
            ctx_logger.warning(f"{path} found but has no base64 content field")
            return GenerationMetadata.not_found()

        try:
            decoded = base64.b64decode(payload["content"]).decode("utf-8")
            content = json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            ctx_logger.warning(f"{path} could not be decoded: {exc}")
            return GenerationMetadata.not_found()

        if not isinstance(content, dict):
            ctx_logger.warning(f"{path} does not hold a JSON object")
            return GenerationMetadata.not_found()

        metadata = parse_generation_metadata(content)
        ctx_logger.debug(
            f"Generation metadata: dependencies={metadata.dependencies_fulfilled}, "
            f"lint_fixes_attempted={metadata.lint_fixes_attempted}"
        )
        return metadata
