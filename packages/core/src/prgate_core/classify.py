"""Single entry point for PR state derivation.

classify() is pure and synchronous: it takes one PR's raw data plus the
privileged reviewer snapshot and returns the full derived-state bundle. The
caller (the reconciliation controller) is responsible for reading a
consistent snapshot and persisting the result atomically.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from prgate_core.models import DerivedState, NarrativeKind, PrivilegedReviewers, PullRequestSnapshot
from prgate_core.rules.approval import backend_approval_status
from prgate_core.rules.full_approval import approved_at_transition, is_fully_approved
from prgate_core.rules.narrative import CommitSource, build_narrative
from prgate_core.rules.readiness import DEFAULT_INFRASTRUCTURE_CHECKS, ready_for_backend_review, ready_transition
from prgate_core.rules.reviews import latest_actionable_reviews, summarize_approvals
from prgate_core.utils.timefmt import ensure_utc, utc_now

DEFAULT_EXEMPT_LABEL = "exempt-be-review"


def classify(
    snapshot: PullRequestSnapshot,
    reviewers: PrivilegedReviewers,
    *,
    previous: DerivedState | None = None,
    now: datetime | None = None,
    commits: CommitSource = None,
    infrastructure_checks: Iterable[str] = DEFAULT_INFRASTRUCTURE_CHECKS,
    exempt_label: str | None = DEFAULT_EXEMPT_LABEL,
) -> DerivedState:
    """Derive every computed PR field from raw reviews, checks and metadata.

    `previous` is the last persisted bundle (defaults to the one attached to
    the snapshot's PR); it is only consulted for transition timestamps, so
    re-running with unchanged input never re-stamps them.
    """
    now = ensure_utc(now) or utc_now()
    pr = snapshot.pull_request
    if previous is None:
        previous = pr.derived

    history = list(snapshot.reviews)
    latest = latest_actionable_reviews(history)
    failing = list(snapshot.failing_checks) if snapshot.failing_checks is not None else None

    backend_status = backend_approval_status(latest, reviewers)

    ready = ready_for_backend_review(
        latest,
        reviewers,
        pr.failed_checks,
        failing,
        infrastructure_checks,
        previous_ready=previous.ready_for_backend_review if previous else None,
    )
    ready_at = ready_transition(
        ready,
        previous.ready_for_backend_review if previous else None,
        previous.ready_for_backend_review_at if previous else None,
        now,
    )

    fully_approved = is_fully_approved(pr, backend_status, failing)
    approved_at = approved_at_transition(
        fully_approved,
        previous.fully_approved if previous else None,
        previous.approved_at if previous else None,
        now,
    )

    narrative = build_narrative(
        history=history,
        latest=latest,
        reviewers=reviewers,
        pr_author=pr.author,
        backend_status=backend_status,
        comments=snapshot.comments,
        commits=commits,
    )

    return DerivedState(
        backend_approval_status=backend_status,
        ready_for_backend_review=ready,
        ready_for_backend_review_at=ready_at,
        fully_approved=fully_approved,
        approved_at=approved_at,
        awaiting_author_changes=narrative.kind is NarrativeKind.CHANGES_REQUESTED,
        narrative=narrative,
        approval_summary=summarize_approvals(latest),
        exempt_from_backend_review=bool(exempt_label) and exempt_label in pr.labels,
        reviewers_version=reviewers.version,
        classified_at=now,
    )
