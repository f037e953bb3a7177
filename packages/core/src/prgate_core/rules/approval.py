"""Backend approval: does any privileged reviewer currently approve the PR?"""

from __future__ import annotations

from collections.abc import Iterable

from prgate_core.models import BackendApproval, PrivilegedReviewers, Review
from prgate_core.rules.reviews import approved_authors


def backend_approval_status(latest: Iterable[Review], reviewers: PrivilegedReviewers) -> BackendApproval:
    """Return APPROVED iff a privileged author's latest actionable verdict is APPROVED.

    `latest` must already be aggregated (see latest_actionable_reviews). There is
    no quorum: one privileged approval is enough. The result carries no
    timestamp information; callers must not derive transition times from it.
    """
    if approved_authors(latest) & reviewers.members:
        return BackendApproval.APPROVED
    return BackendApproval.NOT_APPROVED


def non_privileged_approvers(latest: Iterable[Review], reviewers: PrivilegedReviewers) -> set[str]:
    return approved_authors(latest) - reviewers.members
