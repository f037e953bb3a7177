"""Review aggregation: reduce a PR's review log to one latest actionable review per author."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from prgate_core.models import ApprovalSummary, Review, ReviewState
from prgate_core.utils.timefmt import ensure_utc

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _submitted(review: Review) -> datetime:
    # Pending drafts have no submitted_at; they sort before anything submitted.
    return ensure_utc(review.submitted_at) or _EPOCH


def latest_actionable_reviews(reviews: Iterable[Review]) -> list[Review]:
    """Return the latest actionable review for each distinct author.

    A COMMENTED review never changes approval state, but it commonly follows an
    APPROVED review from the same person ("approved, then left a note"). So per
    author we take the latest review that is *not* COMMENTED, and only fall back
    to the latest review overall when the author has done nothing but comment.

    Output order follows each author's first appearance in the input.
    """
    by_author: dict[str, list[Review]] = {}
    for review in reviews:
        if not review.author:
            continue
        by_author.setdefault(review.author, []).append(review)

    latest: list[Review] = []
    for author_reviews in by_author.values():
        actionable = [r for r in author_reviews if r.state is not ReviewState.COMMENTED]
        candidates = actionable or author_reviews
        latest.append(max(candidates, key=_submitted))
    return latest


def approved_authors(latest: Iterable[Review]) -> set[str]:
    return {r.author for r in latest if r.state is ReviewState.APPROVED}


def summarize_approvals(latest: Iterable[Review]) -> ApprovalSummary:
    """Collapse aggregated reviews into sorted approver / change-requester lists."""
    latest = list(latest)
    approved = sorted(r.author for r in latest if r.state is ReviewState.APPROVED)
    changes = sorted(r.author for r in latest if r.state is ReviewState.CHANGES_REQUESTED)
    if changes:
        status = "changes_requested"
    elif approved:
        status = "approved"
    else:
        status = "pending"
    return ApprovalSummary(
        approved_users=tuple(approved),
        changes_requested_users=tuple(changes),
        status=status,
    )
