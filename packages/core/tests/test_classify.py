"""End-to-end properties of classify()."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from prgate_core.classify import classify
from prgate_core.models import (
    BackendApproval,
    CheckResult,
    CheckStatus,
    NarrativeKind,
    PrivilegedReviewers,
    PullRequest,
    PullRequestSnapshot,
    Review,
    ReviewState,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
REVIEWERS = PrivilegedReviewers(members=frozenset({"alice"}), version=3)
GATE = "Require backend-review-group approval"


def _review(review_id, author, state, minutes=0):
    return Review(id=review_id, author=author, state=ReviewState(state), submitted_at=T0 + timedelta(minutes=minutes))


def _snapshot(reviews=(), failing=(), failed=None, labels=(), **pr_fields):
    failing = tuple(CheckResult(name=n, status=CheckStatus.FAILURE) for n in failing) if failing is not None else None
    pr = PullRequest(
        repository="acme/api",
        number=7,
        author="dev",
        labels=list(labels),
        total_checks=4,
        failed_checks=failed if failed is not None else len(failing or ()),
        **pr_fields,
    )
    return PullRequestSnapshot(pull_request=pr, reviews=tuple(reviews), failing_checks=failing)


def test_not_approved_without_privileged_approval():
    derived = classify(_snapshot([_review(1, "peer", "APPROVED")]), REVIEWERS, now=T0)
    assert derived.backend_approval_status is BackendApproval.NOT_APPROVED
    assert derived.ready_for_backend_review is True
    assert derived.ready_for_backend_review_at == T0


def test_approved_despite_trailing_comment():
    reviews = [_review(1, "alice", "APPROVED", 0), _review(2, "alice", "COMMENTED", 10)]
    derived = classify(_snapshot(reviews), REVIEWERS, now=T0)
    assert derived.backend_approval_status is BackendApproval.APPROVED
    assert derived.approval_summary.approved_users == ("alice",)


def test_idempotent_on_unchanged_input():
    snapshot = _snapshot([_review(1, "peer", "APPROVED"), _review(2, "alice", "APPROVED", 5)])
    first = classify(snapshot, REVIEWERS, now=T0)
    second = classify(snapshot, REVIEWERS, previous=first, now=T0 + timedelta(hours=1))
    assert second.same_state_as(first)
    assert second.ready_for_backend_review_at == T0
    assert second.approved_at == T0


def test_ready_timestamp_cleared_then_restamped():
    ready = classify(_snapshot([_review(1, "peer", "APPROVED")]), REVIEWERS, now=T0)
    blocked = classify(
        _snapshot([_review(1, "peer", "APPROVED")], failing=["Linting"]), REVIEWERS, previous=ready, now=T0 + timedelta(hours=1)
    )
    assert blocked.ready_for_backend_review is False
    assert blocked.ready_for_backend_review_at is None

    later = T0 + timedelta(hours=2)
    again = classify(_snapshot([_review(1, "peer", "APPROVED")]), REVIEWERS, previous=blocked, now=later)
    assert again.ready_for_backend_review_at == later


def test_previous_defaults_to_stored_derived_state():
    snapshot = _snapshot([_review(1, "peer", "APPROVED")])
    first = classify(snapshot, REVIEWERS, now=T0)
    stored = replace(snapshot, pull_request=replace(snapshot.pull_request, derived=first))
    second = classify(stored, REVIEWERS, now=T0 + timedelta(hours=3))
    assert second.ready_for_backend_review_at == T0


def test_full_approval_tolerates_gate_but_not_linting():
    reviews = [_review(1, "alice", "APPROVED")]
    assert classify(_snapshot(reviews, failing=[GATE]), REVIEWERS, now=T0).fully_approved is True
    assert classify(_snapshot(reviews, failing=["Linting"]), REVIEWERS, now=T0).fully_approved is False


def test_full_approval_with_unavailable_detail():
    snapshot = _snapshot([_review(1, "alice", "APPROVED")], failing=None, failed=1)
    derived = classify(snapshot, REVIEWERS, now=T0)
    assert derived.fully_approved is True
    # Readiness stays conservative with the same missing detail.
    assert derived.ready_for_backend_review is False


def test_unavailable_detail_keeps_previous_readiness():
    reviews = [_review(1, "peer", "APPROVED")]
    ready = classify(_snapshot(reviews, failing=[GATE]), REVIEWERS, now=T0)
    assert ready.ready_for_backend_review is True

    later = classify(_snapshot(reviews, failing=None, failed=1), REVIEWERS, previous=ready, now=T0 + timedelta(hours=2))
    assert later.ready_for_backend_review is True
    assert later.ready_for_backend_review_at == T0
    assert later.same_state_as(ready)


def test_narrative_precedence_with_dismissal():
    reviews = [
        _review(1, "alice", "CHANGES_REQUESTED", 0),
        _review(2, "peer", "APPROVED", 10),
        _review(3, "peer2", "DISMISSED", 20),
    ]
    derived = classify(_snapshot(reviews), REVIEWERS, now=T0 + timedelta(hours=1))
    assert derived.narrative.kind is NarrativeKind.NEW_COMMIT_FROM_AUTHOR
    assert derived.awaiting_author_changes is False


def test_awaiting_author_changes_follows_narrative():
    derived = classify(_snapshot([_review(1, "alice", "CHANGES_REQUESTED")]), REVIEWERS, now=T0 + timedelta(hours=1))
    assert derived.narrative.kind is NarrativeKind.CHANGES_REQUESTED
    assert derived.awaiting_author_changes is True


def test_reviewer_removal_recomputes_to_not_approved():
    snapshot = _snapshot([_review(1, "alice", "APPROVED")])
    approved = classify(snapshot, REVIEWERS, now=T0)
    assert approved.backend_approval_status is BackendApproval.APPROVED

    shrunk = PrivilegedReviewers(members=frozenset(), version=4)
    derived = classify(snapshot, shrunk, previous=approved, now=T0 + timedelta(minutes=5))
    assert derived.backend_approval_status is BackendApproval.NOT_APPROVED
    assert derived.reviewers_version == 4


def test_exempt_label():
    derived = classify(_snapshot(labels=["exempt-be-review"]), REVIEWERS, now=T0)
    assert derived.exempt_from_backend_review is True
    assert classify(_snapshot(labels=["bug"]), REVIEWERS, now=T0).exempt_from_backend_review is False
    assert classify(_snapshot(labels=["exempt-be-review"]), REVIEWERS, now=T0, exempt_label=None).exempt_from_backend_review is False


def test_draft_is_never_fully_approved():
    derived = classify(_snapshot([_review(1, "alice", "APPROVED")], draft=True), REVIEWERS, now=T0)
    assert derived.fully_approved is False
    assert derived.approved_at is None


def test_classified_at_is_now():
    assert classify(_snapshot(), REVIEWERS, now=T0).classified_at == T0
