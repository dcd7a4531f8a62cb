"""Pipeline state synthesis.

The state is recomputed from the current snapshot on every call; nothing is
persisted between requests. Rules are evaluated in precedence order:

1. a verification (VPR) check queued or in progress -> ``VPR_RUNNING``
2. a verification check failed -> awaiting ADM, awaiting ALF or manual review
3. every verification check succeeded -> ``VPR_SUCCEEDED``
4. otherwise -> ``CHECKS_PENDING``

A closed pull request overrides all of the above with ``CLOSED``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Sequence

from pipeline_status.logger import get_logger
from pipeline_status.models.pipeline import (
    AutomatedActionsStatus,
    CheckRun,
    ClassifiedComment,
    CommentIntent,
    GenerationMetadata,
    NextAction,
    OverallCheckStatus,
    PipelineState,
    PullRequestInfo,
)

logger = get_logger()

VERIFICATION_JOB_PATTERN = re.compile(
    r"\b(initial_checks|analyze_state_and_dependencies|build_and_run_douglas_checker|report_pr_status)\b",
    re.IGNORECASE,
)
VERIFICATION_NAME_PREFIX = "vpr /"


def is_verification_check(check: CheckRun) -> bool:
    name = check.name.lower()
    return VERIFICATION_NAME_PREFIX in name or bool(VERIFICATION_JOB_PATTERN.search(name))


@dataclass(slots=True)
class PipelineSnapshot:
    pull_request: PullRequestInfo
    checks: List[CheckRun] = field(default_factory=list)
    overall_check_status: OverallCheckStatus = "pending"
    metadata: GenerationMetadata = field(default_factory=GenerationMetadata.not_found)
    latest_comment: ClassifiedComment | None = None
    polling_attempt: int = 0
    max_polling_attempts: int = 360


def _latest_intent(snapshot: PipelineSnapshot) -> CommentIntent | None:
    return snapshot.latest_comment.intent if snapshot.latest_comment else None


def _failed_verification(snapshot: PipelineSnapshot, status: AutomatedActionsStatus) -> AutomatedActionsStatus:
    metadata = snapshot.metadata
    intent = _latest_intent(snapshot)
    status.verification_conclusion_for_head = "failure"

    if metadata.dependencies_fulfilled == "absent" and intent is CommentIntent.HANDOFF_TO_ADM:
        status.pipeline_state = PipelineState.VPR_FAILED_AWAITING_DEPENDENCY_FIX
        status.status_summary = "VPR failed. Dependency resolution (ADM) is expected next."
        status.next_expected_action = NextAction.ADM
        status.ui_hint = "loading"
        return status

    if metadata.lint_fixes_attempted is False and intent is CommentIntent.HANDOFF_TO_ALF:
        status.pipeline_state = PipelineState.VPR_FAILED_AWAITING_LINT_FIX
        status.status_summary = "VPR failed. Lint fixing (ALF) is expected next."
        status.next_expected_action = NextAction.ALF
        status.ui_hint = "loading"
        return status

    status.pipeline_state = PipelineState.VPR_FAILED_NEEDS_MANUAL_REVIEW
    status.next_expected_action = NextAction.MANUAL_REVIEW
    status.should_continue_polling = False
    status.ui_hint = "error"
    if metadata.dependencies_fulfilled == "false":
        status.status_summary = (
            "VPR failed. ADM previously attempted dependency resolution and issues persist. Manual review needed."
        )
    elif metadata.lint_fixes_attempted is True:
        status.status_summary = "VPR failed after lint fix attempt. Manual review likely needed."
    else:
        status.status_summary = "VPR failed. See PR comments for details. Manual review may be needed."
    return status


def _checks_pending(snapshot: PipelineSnapshot, status: AutomatedActionsStatus) -> AutomatedActionsStatus:
    pr = snapshot.pull_request
    overall = snapshot.overall_check_status
    status.pipeline_state = PipelineState.CHECKS_PENDING

    if overall == "pending" and snapshot.checks:
        status.status_summary = "CI checks for the latest commit are pending."
        status.ui_hint = "loading"
    elif not snapshot.checks and pr.state == "open":
        status.status_summary = "Waiting for CI checks to start for the latest commit."
        status.ui_hint = "loading"
    else:
        status.status_summary = (
            f"PR is {pr.state}. Last known CI status for HEAD: {overall}. Review PR for details."
        )
        status.should_continue_polling = pr.state == "open" and overall == "pending"
        status.ui_hint = "warning" if overall == "error" else "info"
    if overall == "error":
        status.should_continue_polling = False
    return status


def _apply_closed(snapshot: PipelineSnapshot, status: AutomatedActionsStatus) -> AutomatedActionsStatus:
    pr = snapshot.pull_request
    merged_status = "merged" if pr.merged else "closed without merging"
    status.status_summary = f"PR was {merged_status}. Polling stopped. ({status.status_summary})"
    status.pipeline_state = PipelineState.CLOSED
    status.should_continue_polling = False
    status.active_workflow = None
    status.next_expected_action = NextAction.NONE
    status.ui_hint = "success" if pr.merged else "info"
    return status


def synthesize(snapshot: PipelineSnapshot) -> AutomatedActionsStatus:
    verification_checks = [check for check in snapshot.checks if is_verification_check(check)]
    status = AutomatedActionsStatus(
        status_summary="Analyzing PR state...",
        pipeline_state=PipelineState.CHECKS_PENDING,
        should_continue_polling=True,
        last_bot_comment=snapshot.latest_comment,
        ui_hint="loading",
    )

    if any(check.is_active for check in verification_checks):
        status.pipeline_state = PipelineState.VPR_RUNNING
        status.active_workflow = "VPR"
        status.status_summary = "VPR workflow is currently running for the latest commit."
    elif any(check.failed for check in verification_checks):
        status = _failed_verification(snapshot, status)
    elif verification_checks and all(
        check.status == "completed" and check.conclusion == "success" for check in verification_checks
    ):
        status.pipeline_state = PipelineState.VPR_SUCCEEDED
        status.verification_conclusion_for_head = "success"
        status.status_summary = "VPR workflow completed successfully for the latest commit!"
        status.next_expected_action = NextAction.NONE
        status.should_continue_polling = False
        status.ui_hint = "success"
    else:
        status = _checks_pending(snapshot, status)

    if snapshot.pull_request.state == "closed":
        return _apply_closed(snapshot, status)

    if status.should_continue_polling and snapshot.polling_attempt >= snapshot.max_polling_attempts:
        logger.info(
            f"PR #{snapshot.pull_request.number} reached {snapshot.polling_attempt} polling attempts; stopping"
        )
        status.status_summary = (
            "Max polling attempts reached. Please check the PR on GitHub for the latest status."
        )
        status.should_continue_polling = False
        status.ui_hint = "error"
    return status
