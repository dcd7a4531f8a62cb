"""Data models for pull request pipeline status snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

OverallCheckStatus = Literal["pending", "success", "failure", "error"]
DependenciesFulfilled = Literal["absent", "true", "false", "not_found"]
UiHint = Literal["info", "success", "warning", "error", "loading"]

FAILED_CONCLUSIONS = frozenset({"failure", "timed_out", "cancelled", "action_required"})


class BotTag(str, Enum):
    VPR = "VPR"
    ADM = "ADM"
    ALF = "ALF"
    PR_CREATOR = "PR_CREATOR"


class CommentIntent(str, Enum):
    HANDOFF_TO_ADM = "handoff_to_adm"
    HANDOFF_TO_ALF = "handoff_to_alf"
    VERIFICATION_SUCCEEDED = "verification_succeeded"
    VERIFICATION_FAILED_MANUAL_REVIEW = "verification_failed_manual_review"
    VERIFICATION_FAILED = "verification_failed"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    DEPENDENCY_RESOLUTION_FAILED = "dependency_resolution_failed"
    LINT_FIXES_APPLIED = "lint_fixes_applied"
    LINT_FIX_NO_CHANGES = "lint_fix_no_changes"
    LINT_FIX_API_FAILED = "lint_fix_api_failed"
    PR_CREATED = "pr_created"
    UNRECOGNIZED = "unrecognized"


class PipelineState(str, Enum):
    VPR_RUNNING = "VPR_RUNNING"
    VPR_FAILED_AWAITING_DEPENDENCY_FIX = "VPR_FAILED_AWAITING_DEPENDENCY_FIX"
    VPR_FAILED_AWAITING_LINT_FIX = "VPR_FAILED_AWAITING_LINT_FIX"
    VPR_FAILED_NEEDS_MANUAL_REVIEW = "VPR_FAILED_NEEDS_MANUAL_REVIEW"
    VPR_SUCCEEDED = "VPR_SUCCEEDED"
    CHECKS_PENDING = "CHECKS_PENDING"
    CLOSED = "CLOSED"


class NextAction(str, Enum):
    ADM = "ADM"
    ALF = "ALF"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    NONE = "NONE"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckRun(BaseModel):
    """One check run as reported by GitHub; keeps the API's snake_case keys."""

    id: int | None = Field(default=None, exclude=True)
    name: str
    status: str
    conclusion: str | None = None
    url: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    output_summary: str | None = Field(default=None, exclude=True)

    @property
    def failed(self) -> bool:
        return self.conclusion in FAILED_CONCLUSIONS

    @property
    def is_active(self) -> bool:
        return self.status in ("queued", "in_progress")


@dataclass(slots=True)
class IssueComment:
    author_login: str
    body: str
    created_at: str
    url: str | None = None


class ClassifiedComment(_CamelModel):
    bot_tag: BotTag
    intent: CommentIntent
    intent_summary: str
    truncated_body: str
    created_at: str
    url: str | None = None


class GenerationMetadata(_CamelModel):
    dependencies_fulfilled: DependenciesFulfilled = "not_found"
    lint_fixes_attempted: bool | Literal["not_found"] = "not_found"
    identified_dependencies: List[str] | None = None

    @classmethod
    def not_found(cls) -> "GenerationMetadata":
        return cls()


@dataclass(slots=True)
class PullRequestInfo:
    number: int
    url: str
    state: Literal["open", "closed"]
    merged: bool
    head_sha: str
    head_branch: str
    title: str | None = None


@dataclass(slots=True)
class PreviewDeployment:
    url: str | None = None
    succeeded: bool = False
    screenshot_url: str | None = None
    source: Literal["check_run", "comment", "deployments_api"] | None = None
    lookup_failed: bool = False


class AutomatedActionsStatus(_CamelModel):
    status_summary: str
    pipeline_state: PipelineState
    active_workflow: Literal["VPR"] | None = None
    next_expected_action: NextAction | None = None
    should_continue_polling: bool
    last_bot_comment: ClassifiedComment | None = None
    verification_conclusion_for_head: Literal["success", "failure"] | None = None
    ui_hint: UiHint = "info"


class PipelineStatus(_CamelModel):
    pr_url: str
    pr_number: int
    head_sha: str
    head_branch: str
    pr_state: Literal["open", "closed"]
    is_merged: bool
    checks: List[CheckRun] = Field(default_factory=list)
    overall_check_status: OverallCheckStatus
    preview_url: str | None = None
    preview_deploy_succeeded: bool = False
    screenshot_url: str | None = None
    generation_metadata: GenerationMetadata
    automated_actions: AutomatedActionsStatus
    degraded: bool = False
    last_updated: str
