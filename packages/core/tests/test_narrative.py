"""Tests for the change-request narrative builder."""

from datetime import datetime, timedelta, timezone

from prgate_core.models import BackendApproval, Comment, Commit, NarrativeKind, PrivilegedReviewers, Review, ReviewState
from prgate_core.rules.approval import backend_approval_status
from prgate_core.rules.narrative import build_narrative, commits_after
from prgate_core.rules.reviews import latest_actionable_reviews

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
NOW = T0 + timedelta(hours=5)
REVIEWERS = PrivilegedReviewers(members=frozenset({"alice"}), version=1)


def _review(review_id, author, state, minutes):
    return Review(id=review_id, author=author, state=ReviewState(state), submitted_at=T0 + timedelta(minutes=minutes))


def _narrate(history, comments=(), commits=None, author="dev"):
    latest = latest_actionable_reviews(history)
    return build_narrative(
        history=history,
        latest=latest,
        reviewers=REVIEWERS,
        pr_author=author,
        backend_status=backend_approval_status(latest, REVIEWERS),
        comments=comments,
        commits=commits,
    )


class TestRuleOrder:
    def test_none_without_reviews(self):
        narrative = _narrate([])
        assert narrative.kind is NarrativeKind.NONE
        assert not narrative

    def test_changes_requested_with_who_and_when(self):
        narrative = _narrate([_review(1, "alice", "CHANGES_REQUESTED", 120)])
        assert narrative.kind is NarrativeKind.CHANGES_REQUESTED
        assert narrative.detail == "@alice requested changes"
        assert narrative.at == T0 + timedelta(minutes=120)
        assert narrative.describe(NOW) == "@alice requested changes (3h ago)"

    def test_privileged_comment_counts_as_feedback(self):
        narrative = _narrate([_review(1, "alice", "COMMENTED", 240)])
        assert narrative.kind is NarrativeKind.CHANGES_REQUESTED
        assert narrative.describe(NOW) == "@alice commented (1h ago)"

    def test_non_privileged_feedback_ignored(self):
        narrative = _narrate([_review(1, "peer", "CHANGES_REQUESTED", 0)])
        assert narrative.kind is NarrativeKind.NONE

    def test_suppressed_when_same_reviewer_approved_later(self):
        history = [_review(1, "alice", "CHANGES_REQUESTED", 0), _review(2, "alice", "APPROVED", 60)]
        assert _narrate(history).kind is NarrativeKind.NONE

    def test_author_comment_after_feedback(self):
        history = [_review(1, "alice", "CHANGES_REQUESTED", 0)]
        comments = [Comment(id=10, author="dev", created_at=T0 + timedelta(minutes=30))]
        narrative = _narrate(history, comments=comments)
        assert narrative.kind is NarrativeKind.NEW_COMMENT_FROM_AUTHOR
        assert narrative.detail == "@dev replied to @alice"
        assert narrative.at == T0 + timedelta(minutes=30)

    def test_author_comment_before_feedback_does_not_count(self):
        history = [_review(1, "alice", "CHANGES_REQUESTED", 60)]
        comments = [Comment(id=10, author="dev", created_at=T0)]
        assert _narrate(history, comments=comments).kind is NarrativeKind.CHANGES_REQUESTED

    def test_author_review_reply_counts(self):
        history = [_review(1, "alice", "COMMENTED", 0), _review(2, "dev", "COMMENTED", 10)]
        assert _narrate(history).kind is NarrativeKind.NEW_COMMENT_FROM_AUTHOR

    def test_dismissal_with_peer_approval_and_backend_feedback(self):
        history = [
            _review(1, "alice", "CHANGES_REQUESTED", 0),
            _review(2, "peer", "APPROVED", 10),
            _review(3, "other", "DISMISSED", 20),
        ]
        narrative = _narrate(history)
        assert narrative.kind is NarrativeKind.NEW_COMMIT_FROM_AUTHOR

    def test_dismissal_ignored_when_backend_approved(self):
        history = [
            _review(1, "alice", "COMMENTED", 0),
            _review(2, "alice", "APPROVED", 5),
            _review(3, "peer", "APPROVED", 10),
            _review(4, "other", "DISMISSED", 20),
        ]
        assert _narrate(history).kind is NarrativeKind.NONE

    def test_new_commits_after_approval_take_precedence(self):
        history = [
            _review(1, "alice", "CHANGES_REQUESTED", 0),
            _review(2, "peer", "APPROVED", 10),
            _review(3, "other", "DISMISSED", 20),
            _review(4, "alice", "APPROVED", 30),
        ]
        commits = [Commit(sha="c1", committed_at=T0 + timedelta(minutes=45), author_login="dev")]
        narrative = _narrate(history, commits=commits)
        assert narrative.kind is NarrativeKind.NEW_COMMITS_AFTER_APPROVAL
        assert narrative.detail == "@dev pushed 1 commit(s) after @alice approved"
        assert narrative.at == T0 + timedelta(minutes=30)


class TestCommitHistory:
    def test_lazy_lookup_is_used(self):
        history = [_review(1, "alice", "APPROVED", 0)]
        calls = []

        def lookup():
            calls.append(1)
            return [Commit(sha="c1", committed_at=T0 + timedelta(minutes=5), author_login="dev")]

        assert _narrate(history, commits=lookup).kind is NarrativeKind.NEW_COMMITS_AFTER_APPROVAL
        assert calls == [1]

    def test_lookup_not_called_without_privileged_approval(self):
        def lookup():
            raise AssertionError("should not be called")

        assert _narrate([_review(1, "peer", "APPROVED", 0)], commits=lookup).kind is NarrativeKind.NONE

    def test_lookup_failure_means_no_new_commits(self):
        def lookup():
            raise RuntimeError("rate limited")

        history = [_review(1, "alice", "APPROVED", 0)]
        assert _narrate(history, commits=lookup).kind is NarrativeKind.NONE

    def test_commits_by_others_ignored(self):
        commits = [Commit(sha="c1", committed_at=T0 + timedelta(minutes=5), author_login="someone")]
        assert _narrate([_review(1, "alice", "APPROVED", 0)], commits=commits).kind is NarrativeKind.NONE

    def test_login_takes_precedence_over_git_name(self):
        commit = Commit(sha="c1", committed_at=T0 + timedelta(minutes=5), author_login="bot", author_name="dev")
        assert commits_after([commit], "dev", T0) == []

    def test_git_name_used_for_unlinked_commits(self):
        commit = Commit(sha="c1", committed_at=T0 + timedelta(minutes=5), author_name="Dev")
        assert commits_after([commit], "dev", T0) == [commit]

    def test_commits_at_or_before_approval_ignored(self):
        commit = Commit(sha="c1", committed_at=T0, author_login="dev")
        assert commits_after([commit], "dev", T0) == []

    def test_none_source(self):
        assert commits_after(None, "dev", T0) == []


def test_backend_status_passed_through_matters():
    history = [
        _review(1, "alice", "CHANGES_REQUESTED", 0),
        _review(2, "peer", "APPROVED", 10),
        _review(3, "other", "DISMISSED", 20),
    ]
    latest = latest_actionable_reviews(history)
    narrative = build_narrative(
        history=history,
        latest=latest,
        reviewers=REVIEWERS,
        pr_author="dev",
        backend_status=BackendApproval.APPROVED,
    )
    assert narrative.kind is NarrativeKind.CHANGES_REQUESTED
