import pytest

from pipeline_status.config import BotUsernames
from pipeline_status.models.pipeline import BotTag, CommentIntent, IssueComment
from pipeline_status.services.comment_classifier import (
    BODY_PREVIEW_LENGTH,
    FALLBACK_SUMMARY,
    CommentClassifier,
    classify_comment,
)

from conftest import make_comment

VPR = "oet-ci-bot[bot]"
ADM = "ai-dependency-manager[bot]"
ALF = "ai-lint-fixer[bot]"
CREATOR = "oet-bot[bot]"


@pytest.fixture
def usernames():
    return BotUsernames(vpr=VPR, adm=ADM, alf=ALF, pr_creator=CREATOR)


def _comment(login, body, created_at="2024-05-01T11:00:00Z"):
    return IssueComment(author_login=login, body=body, created_at=created_at, url="https://example.test/c")


@pytest.mark.parametrize(
    "login, body, bot_tag, intent, summary",
    [
        (
            VPR,
            "## Handoff\nThe AI Dependency Manager (ADM) will be triggered to resolve packages.",
            BotTag.VPR,
            CommentIntent.HANDOFF_TO_ADM,
            "VPR: Handoff to ADM.",
        ),
        (
            VPR,
            "## Handoff\nThe AI Lint Fixer (ALF) will be triggered next.",
            BotTag.VPR,
            CommentIntent.HANDOFF_TO_ALF,
            "VPR: Handoff to ALF.",
        ),
        (VPR, "✅ VPR Succeeded for commit abc123", BotTag.VPR, CommentIntent.VERIFICATION_SUCCEEDED, "VPR: Succeeded."),
        (
            VPR,
            "❌ VPR Failed. Manual review required before merging.",
            BotTag.VPR,
            CommentIntent.VERIFICATION_FAILED_MANUAL_REVIEW,
            "VPR: Failed, manual review needed.",
        ),
        (VPR, "❌ VPR Failed on build step.", BotTag.VPR, CommentIntent.VERIFICATION_FAILED, "VPR: Failed."),
        (
            ADM,
            "Dependencies successfully processed and committed.",
            BotTag.ADM,
            CommentIntent.DEPENDENCIES_RESOLVED,
            "ADM: Dependencies resolved.",
        ),
        (
            ADM,
            "⚠️ Dependency Resolution Failed for `left-pad`.",
            BotTag.ADM,
            CommentIntent.DEPENDENCY_RESOLUTION_FAILED,
            "ADM: Dependency resolution failed.",
        ),
        (
            ALF,
            "AI-assisted lint fixes applied to 3 files.",
            BotTag.ALF,
            CommentIntent.LINT_FIXES_APPLIED,
            "ALF: Lint fixes applied.",
        ),
        (
            ALF,
            "AI proposed no code changes for the reported issues.",
            BotTag.ALF,
            CommentIntent.LINT_FIX_NO_CHANGES,
            "ALF: Attempted, no code changes made by AI.",
        ),
        (ALF, "AI Lint Fix API Call Failed (HTTP 503).", BotTag.ALF, CommentIntent.LINT_FIX_API_FAILED, "ALF: API call failed."),
        (
            CREATOR,
            "Adds the new tool `json-formatter` to the catalogue.",
            BotTag.PR_CREATOR,
            CommentIntent.PR_CREATED,
            "PR Creator: New tool PR created.",
        ),
    ],
)
def test_rules_map_bodies_to_intents(usernames, login, body, bot_tag, intent, summary):
    result = classify_comment(_comment(login, body), usernames)

    assert result is not None
    assert result.bot_tag is bot_tag
    assert result.intent is intent
    assert result.intent_summary == summary


def test_handoff_takes_precedence_over_generic_failure(usernames):
    body = "❌ VPR Failed.\n\n### Handoff\nAI Dependency Manager (ADM) will be triggered."

    result = classify_comment(_comment(VPR, body), usernames)

    assert result.intent is CommentIntent.HANDOFF_TO_ADM


def test_unmatched_bot_comment_gets_fallback_summary(usernames):
    result = classify_comment(_comment(ADM, "Starting work on this PR."), usernames)

    assert result.bot_tag is BotTag.ADM
    assert result.intent is CommentIntent.UNRECOGNIZED
    assert result.intent_summary == FALLBACK_SUMMARY


def test_rule_for_another_bot_does_not_match(usernames):
    result = classify_comment(_comment(ALF, "VPR Succeeded"), usernames)

    assert result.intent is CommentIntent.UNRECOGNIZED


def test_human_comments_are_ignored(usernames):
    assert classify_comment(_comment("octocat", "VPR Succeeded"), usernames) is None


def test_login_comparison_is_case_insensitive(usernames):
    result = classify_comment(_comment("OET-CI-Bot[bot]", "VPR Succeeded"), usernames)

    assert result is not None
    assert result.bot_tag is BotTag.VPR


def test_body_is_truncated_for_preview(usernames):
    body = "VPR Succeeded " + "x" * 500

    result = classify_comment(_comment(VPR, body), usernames)

    assert result.truncated_body == body[:BODY_PREVIEW_LENGTH] + "..."


def test_short_body_is_kept_verbatim(usernames):
    result = classify_comment(_comment(VPR, "VPR Succeeded"), usernames)

    assert result.truncated_body == "VPR Succeeded"


def test_shared_login_picks_the_bot_whose_rule_matches():
    shared = BotUsernames(vpr="github-actions[bot]", adm="github-actions[bot]", alf=ALF, pr_creator=CREATOR)

    result = classify_comment(_comment("github-actions[bot]", "Dependencies successfully processed"), shared)

    assert result.bot_tag is BotTag.ADM
    assert result.intent is CommentIntent.DEPENDENCIES_RESOLVED


@pytest.mark.asyncio
async def test_classifier_returns_newest_bot_comment_first(fake_github, repo_client, usernames):
    fake_github.comments[7] = [
        make_comment(VPR, "❌ VPR Failed", created_at="2024-05-01T10:00:00Z", comment_id=1),
        make_comment("octocat", "any update?", created_at="2024-05-01T12:00:00Z", comment_id=2),
        make_comment(ADM, "Dependencies successfully processed", created_at="2024-05-01T11:00:00Z", comment_id=3),
    ]

    classification = await CommentClassifier(repo_client, usernames).classify(7)

    assert len(classification.comments) == 3
    assert [comment.intent for comment in classification.classified] == [
        CommentIntent.DEPENDENCIES_RESOLVED,
        CommentIntent.VERIFICATION_FAILED,
    ]
    assert classification.latest.created_at == "2024-05-01T11:00:00Z"
    request = fake_github.requests[-1]
    assert request.url.params["per_page"] == "15"
    assert request.headers["Authorization"] == "Bearer stub-token"


@pytest.mark.asyncio
async def test_classifier_without_bot_comments_has_no_latest(fake_github, repo_client, usernames):
    fake_github.comments[7] = [make_comment("octocat", "LGTM")]

    classification = await CommentClassifier(repo_client, usernames).classify(7)

    assert classification.classified == []
    assert classification.latest is None


@pytest.mark.asyncio
async def test_latest_comment_is_found_past_the_first_page(fake_github, repo_client, usernames):
    notes = [
        make_comment("octocat", f"note {index}", created_at=f"2024-05-01T10:{index:02d}:00Z", comment_id=index + 2)
        for index in range(19)
    ]
    fake_github.comments[7] = [
        make_comment(VPR, "✅ VPR Succeeded", created_at="2024-05-01T09:00:00Z", comment_id=1),
        *notes,
        make_comment(
            VPR,
            "VPR Failed. Handoff: AI Dependency Manager (ADM) will be triggered.",
            created_at="2024-05-01T11:00:00Z",
            comment_id=21,
        ),
    ]

    classification = await CommentClassifier(repo_client, usernames).classify(7)

    assert classification.latest.intent is CommentIntent.HANDOFF_TO_ADM
    assert classification.latest.created_at == "2024-05-01T11:00:00Z"
    assert all(comment.intent is not CommentIntent.VERIFICATION_SUCCEEDED for comment in classification.classified)
