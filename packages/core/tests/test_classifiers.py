"""Tests for the approval, readiness and full-approval classifiers."""

from datetime import datetime, timedelta, timezone

import pytest

from prgate_core.models import BackendApproval, CheckResult, CheckStatus, PrivilegedReviewers, PullRequest, Review, ReviewState
from prgate_core.rules.approval import backend_approval_status, non_privileged_approvers
from prgate_core.rules.full_approval import approved_at_transition, is_approval_gate, is_fully_approved
from prgate_core.rules.readiness import is_infrastructure_check, ready_for_backend_review, ready_transition
from prgate_core.rules.reviews import latest_actionable_reviews

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
REVIEWERS = PrivilegedReviewers(members=frozenset({"backend-bob"}), version=1)


def _latest(*specs):
    reviews = [
        Review(id=i, author=author, state=ReviewState(state), submitted_at=T0 + timedelta(minutes=i))
        for i, (author, state) in enumerate(specs, start=1)
    ]
    return latest_actionable_reviews(reviews)


def _failing(*names):
    return [CheckResult(name=n, status=CheckStatus.FAILURE) for n in names]


def _pr(**overrides):
    defaults = dict(repository="acme/api", number=1, author="dev", total_checks=5, failed_checks=0)
    defaults.update(overrides)
    return PullRequest(**defaults)


# ---------------------------------------------------------------------------
# Backend approval
# ---------------------------------------------------------------------------


class TestBackendApproval:
    def test_not_approved_without_privileged_approval(self):
        latest = _latest(("peer", "APPROVED"), ("backend-bob", "COMMENTED"))
        assert backend_approval_status(latest, REVIEWERS) is BackendApproval.NOT_APPROVED

    def test_approved_despite_trailing_comment(self):
        latest = _latest(("backend-bob", "APPROVED"), ("backend-bob", "COMMENTED"))
        assert backend_approval_status(latest, REVIEWERS) is BackendApproval.APPROVED

    def test_changes_requested_after_approval_revokes(self):
        latest = _latest(("backend-bob", "APPROVED"), ("backend-bob", "CHANGES_REQUESTED"))
        assert backend_approval_status(latest, REVIEWERS) is BackendApproval.NOT_APPROVED

    def test_empty_reviewer_set(self):
        latest = _latest(("backend-bob", "APPROVED"))
        assert backend_approval_status(latest, PrivilegedReviewers()) is BackendApproval.NOT_APPROVED

    def test_non_privileged_approvers(self):
        latest = _latest(("peer", "APPROVED"), ("backend-bob", "APPROVED"), ("other", "COMMENTED"))
        assert non_privileged_approvers(latest, REVIEWERS) == {"peer"}


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


class TestInfrastructureChecks:
    @pytest.mark.parametrize(
        "name",
        [
            "Require backend-review-group approval",
            "Danger",
            "danger/pr-checks",
            "Pull Request Ready",
            "pr labeler",
            "Check CODEOWNERS / verify",
            "Validate DataDog monitors",
        ],
    )
    def test_infrastructure(self, name):
        assert is_infrastructure_check(name)

    @pytest.mark.parametrize("name", ["Linting", "Unit tests / rspec", "", None])
    def test_real_checks(self, name):
        assert not is_infrastructure_check(name)

    def test_configurable_names(self):
        assert is_infrastructure_check("Changelog bot", extra_names=["changelog"])
        assert not is_infrastructure_check("Pull Request Ready", extra_names=[])


class TestReadyForBackendReview:
    def test_ready_with_peer_approval_and_green_ci(self):
        assert ready_for_backend_review(_latest(("peer", "APPROVED")), REVIEWERS, 0, [])

    def test_not_ready_without_peer_approval(self):
        latest = _latest(("backend-bob", "APPROVED"))
        assert not ready_for_backend_review(latest, REVIEWERS, 0, [])

    def test_infrastructure_failures_do_not_block(self):
        failing = _failing("Require backend-review-group approval", "Danger")
        assert ready_for_backend_review(_latest(("peer", "APPROVED")), REVIEWERS, 2, failing)

    def test_real_failure_blocks(self):
        failing = _failing("Danger", "Linting")
        assert not ready_for_backend_review(_latest(("peer", "APPROVED")), REVIEWERS, 2, failing)

    @pytest.mark.parametrize("failing", [None, []])
    def test_failures_without_detail_are_not_ready(self, failing):
        assert not ready_for_backend_review(_latest(("peer", "APPROVED")), REVIEWERS, 1, failing)

    def test_no_failures_without_detail_is_fine(self):
        assert ready_for_backend_review(_latest(("peer", "APPROVED")), REVIEWERS, 0, None)

    def test_missing_detail_falls_back_to_previous_verdict(self):
        latest = _latest(("peer", "APPROVED"))
        assert ready_for_backend_review(latest, REVIEWERS, 1, None, previous_ready=True)
        assert not ready_for_backend_review(latest, REVIEWERS, 1, None, previous_ready=False)

    def test_previous_verdict_still_needs_peer_approval(self):
        latest = _latest(("backend-bob", "APPROVED"))
        assert not ready_for_backend_review(latest, REVIEWERS, 1, None, previous_ready=True)


class TestReadyTransition:
    def test_false_to_true_stamps_now(self):
        assert ready_transition(True, False, None, T0) == T0

    def test_unknown_previous_counts_as_false(self):
        assert ready_transition(True, None, None, T0) == T0

    def test_true_to_true_keeps_previous(self):
        earlier = T0 - timedelta(hours=2)
        assert ready_transition(True, True, earlier, T0) == earlier

    def test_true_to_false_clears(self):
        assert ready_transition(False, True, T0 - timedelta(hours=2), T0) is None


# ---------------------------------------------------------------------------
# Full approval
# ---------------------------------------------------------------------------


class TestIsFullyApproved:
    def test_green_ci(self):
        assert is_fully_approved(_pr(), BackendApproval.NOT_APPROVED, [])

    @pytest.mark.parametrize(
        "overrides",
        [{"state": "closed"}, {"state": "merged"}, {"draft": True}, {"total_checks": 0}],
    )
    def test_requires_open_non_draft_with_checks(self, overrides):
        assert not is_fully_approved(_pr(**overrides), BackendApproval.APPROVED, [])

    def test_tolerates_the_approval_gate(self):
        pr = _pr(failed_checks=1)
        failing = _failing("Require backend-review-group approval")
        assert is_fully_approved(pr, BackendApproval.APPROVED, failing)

    def test_other_single_failure_is_not_tolerated(self):
        pr = _pr(failed_checks=1)
        assert not is_fully_approved(pr, BackendApproval.APPROVED, _failing("Linting"))

    def test_gate_tolerance_needs_backend_approval(self):
        pr = _pr(failed_checks=1)
        failing = _failing("Require backend-review-group approval")
        assert not is_fully_approved(pr, BackendApproval.NOT_APPROVED, failing)

    def test_gate_plus_real_failure_is_not_fully_approved(self):
        pr = _pr(failed_checks=2)
        failing = _failing("Require backend-review-group approval", "Linting")
        assert not is_fully_approved(pr, BackendApproval.APPROVED, failing)

    @pytest.mark.parametrize("failing", [None, []])
    def test_unavailable_detail_defaults_to_true(self, failing):
        assert is_fully_approved(_pr(failed_checks=1), BackendApproval.APPROVED, failing)

    def test_approval_gate_name(self):
        assert is_approval_gate("Backend Approval Check")
        assert not is_approval_gate("backend tests")
        assert not is_approval_gate(None)


class TestApprovedAtTransition:
    def test_stamped_on_first_full_approval(self):
        assert approved_at_transition(True, False, None, T0) == T0

    def test_kept_while_fully_approved(self):
        earlier = T0 - timedelta(days=1)
        assert approved_at_transition(True, True, earlier, T0) == earlier

    def test_cleared_on_reversal(self):
        assert approved_at_transition(False, True, T0, T0) is None
