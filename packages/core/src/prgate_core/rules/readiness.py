"""Ready-for-backend-review classification and its transition timestamp."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime

from prgate_core.models import CheckResult, PrivilegedReviewers, Review
from prgate_core.rules.approval import non_privileged_approvers

# Substrings that mark a check as review bookkeeping rather than real CI.
_INFRASTRUCTURE_MARKERS = ("backend", "danger")

DEFAULT_INFRASTRUCTURE_CHECKS: tuple[str, ...] = (
    "Pull Request Ready",
    "PR Labeler",
    "Check CODEOWNERS",
    "Warn PR",
    "Validate DataDog",
)


def is_infrastructure_check(name: str | None, extra_names: Iterable[str] = DEFAULT_INFRASTRUCTURE_CHECKS) -> bool:
    """True for checks that gate on review bookkeeping (approval gates, danger, labelers)."""
    lowered = (name or "").lower()
    if not lowered:
        return False
    if any(marker in lowered for marker in _INFRASTRUCTURE_MARKERS):
        return True
    return any(known.lower() in lowered for known in extra_names if known)


def blocking_failures(
    failing: Sequence[CheckResult],
    infrastructure_checks: Iterable[str] = DEFAULT_INFRASTRUCTURE_CHECKS,
) -> list[CheckResult]:
    infrastructure_checks = tuple(infrastructure_checks)
    return [c for c in failing if not is_infrastructure_check(c.name, infrastructure_checks)]


def ready_for_backend_review(
    latest: Iterable[Review],
    reviewers: PrivilegedReviewers,
    failed_count: int,
    failing: Sequence[CheckResult] | None,
    infrastructure_checks: Iterable[str] = DEFAULT_INFRASTRUCTURE_CHECKS,
    previous_ready: bool | None = None,
) -> bool:
    """Ready iff no real CI check is failing and a non-privileged reviewer approved.

    `failing` is the cached failing-check detail. When the PR reports failures
    but the detail is unavailable we cannot tell infrastructure checks from
    real ones. The CI half of the answer then falls back to `previous_ready`,
    the last verdict made with detail, and to "not ready" when there is none.
    """
    if failed_count > 0 and not failing and not previous_ready:
        return False
    if failing and blocking_failures(failing, infrastructure_checks):
        return False
    return bool(non_privileged_approvers(latest, reviewers))


def ready_transition(
    ready: bool,
    previous_ready: bool | None,
    previous_at: datetime | None,
    now: datetime,
) -> datetime | None:
    """Return the ready_for_backend_review_at value after this classification.

    Stamped only on a false→true flip (an unknown previous value counts as
    false), cleared on true→false, and otherwise carried over untouched so that
    re-running the classifier never re-stamps it.
    """
    if not ready:
        return None
    if previous_ready:
        return previous_at or now
    return now
