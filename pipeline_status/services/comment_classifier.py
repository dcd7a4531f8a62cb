"""Bot comment classification for pull request issue comments.

Each recognised comment is matched against ``INTENT_RULES``: an ordered table of
``(bot, intent, summary, predicate)`` entries. The first entry whose bot matches
the author and whose predicate accepts the body wins; a bot comment that no
entry accepts gets ``FALLBACK_SUMMARY``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple

from pipeline_status.config import BotUsernames
from pipeline_status.github_client import GitHubRepositoryClient
from pipeline_status.logger import get_logger, log_timing, log_with_context
from pipeline_status.models.pipeline import BotTag, ClassifiedComment, CommentIntent, IssueComment

logger = get_logger()

FALLBACK_SUMMARY = "Recent bot activity noted."
BODY_PREVIEW_LENGTH = 300

BodyPredicate = Callable[[str], bool]


def contains_all(*needles: str) -> BodyPredicate:
    def _predicate(body: str) -> bool:
        return all(needle in body for needle in needles)

    return _predicate


@dataclass(frozen=True)
class IntentRule:
    bot: BotTag
    intent: CommentIntent
    summary: str
    predicate: BodyPredicate


INTENT_RULES: Tuple[IntentRule, ...] = (
    IntentRule(
        BotTag.VPR,
        CommentIntent.HANDOFF_TO_ADM,
        "VPR: Handoff to ADM.",
        contains_all("Handoff", "AI Dependency Manager (ADM) will be triggered"),
    ),
    IntentRule(
        BotTag.VPR,
        CommentIntent.HANDOFF_TO_ALF,
        "VPR: Handoff to ALF.",
        contains_all("Handoff", "AI Lint Fixer (ALF) will be triggered"),
    ),
    IntentRule(BotTag.VPR, CommentIntent.VERIFICATION_SUCCEEDED, "VPR: Succeeded.", contains_all("VPR Succeeded")),
    IntentRule(
        BotTag.VPR,
        CommentIntent.VERIFICATION_FAILED_MANUAL_REVIEW,
        "VPR: Failed, manual review needed.",
        contains_all("VPR Failed", "Manual review required"),
    ),
    IntentRule(BotTag.VPR, CommentIntent.VERIFICATION_FAILED, "VPR: Failed.", contains_all("VPR Failed")),
    IntentRule(
        BotTag.ADM,
        CommentIntent.DEPENDENCIES_RESOLVED,
        "ADM: Dependencies resolved.",
        contains_all("Dependencies successfully processed"),
    ),
    IntentRule(
        BotTag.ADM,
        CommentIntent.DEPENDENCY_RESOLUTION_FAILED,
        "ADM: Dependency resolution failed.",
        contains_all("Dependency Resolution Failed"),
    ),
    IntentRule(
        BotTag.ALF,
        CommentIntent.LINT_FIXES_APPLIED,
        "ALF: Lint fixes applied.",
        contains_all("AI-assisted lint fixes applied"),
    ),
    IntentRule(
        BotTag.ALF,
        CommentIntent.LINT_FIX_NO_CHANGES,
        "ALF: Attempted, no code changes made by AI.",
        contains_all("AI proposed no code changes"),
    ),
    IntentRule(
        BotTag.ALF,
        CommentIntent.LINT_FIX_API_FAILED,
        "ALF: API call failed.",
        contains_all("AI Lint Fix API Call Failed"),
    ),
    IntentRule(
        BotTag.PR_CREATOR,
        CommentIntent.PR_CREATED,
        "PR Creator: New tool PR created.",
        contains_all("Adds the new tool"),
    ),
)


@dataclass(slots=True)
class CommentClassification:
    comments: List[IssueComment] = field(default_factory=list)
    classified: List[ClassifiedComment] = field(default_factory=list)

    @property
    def latest(self) -> ClassifiedComment | None:
        return self.classified[0] if self.classified else None


def _identity_table(usernames: BotUsernames) -> List[Tuple[BotTag, str]]:
    return [
        (BotTag.VPR, usernames.vpr),
        (BotTag.ADM, usernames.adm),
        (BotTag.ALF, usernames.alf),
        (BotTag.PR_CREATOR, usernames.pr_creator),
    ]


def _truncate(body: str) -> str:
    if len(body) <= BODY_PREVIEW_LENGTH:
        return body
    return body[:BODY_PREVIEW_LENGTH] + "..."


def _serialize_comment(comment: Dict[str, Any]) -> IssueComment:
    user = comment.get("user") or {}
    return IssueComment(
        author_login=user.get("login") or "",
        body=comment.get("body") or "",
        created_at=comment.get("created_at") or "",
        url=comment.get("html_url"),
    )


def classify_comment(
    comment: IssueComment,
    usernames: BotUsernames,
    rules: Sequence[IntentRule] = INTENT_RULES,
) -> ClassifiedComment | None:
    """Classify one comment, or return None when a known bot did not write it."""

    login = comment.author_login.strip().lower()
    # Several bots may post under the same login (e.g. github-actions[bot]).
    candidates = [tag for tag, username in _identity_table(usernames) if username == login]
    if not candidates:
        return None

    bot_tag = candidates[0]
    intent = CommentIntent.UNRECOGNIZED
    summary = FALLBACK_SUMMARY
    for rule in rules:
        if rule.bot in candidates and rule.predicate(comment.body):
            bot_tag, intent, summary = rule.bot, rule.intent, rule.summary
            break

    return ClassifiedComment(
        bot_tag=bot_tag,
        intent=intent,
        intent_summary=summary,
        truncated_body=_truncate(comment.body),
        created_at=comment.created_at,
        url=comment.url,
    )


class CommentClassifier:
    def __init__(self, client: GitHubRepositoryClient, usernames: BotUsernames) -> None:
        self._client = client
        self._usernames = usernames

    async def classify(self, pr_number: int) -> CommentClassification:
        ctx_logger = log_with_context(logger, pr_number=pr_number)
        with log_timing(ctx_logger, "list_issue_comments"):
            raw_comments = await self._client.list_issue_comments(pr_number)

        comments = [_serialize_comment(comment) for comment in raw_comments]
        classified = [
            result
            for result in (classify_comment(comment, self._usernames) for comment in comments)
            if result is not None
        ]
        if classified:
            latest = classified[0]
            ctx_logger.debug(f"Latest bot comment: {latest.bot_tag.value} -> {latest.intent_summary}")
        else:
            ctx_logger.debug(f"No known bot comments among {len(comments)} recent comment(s)")
        return CommentClassification(comments=comments, classified=classified)
