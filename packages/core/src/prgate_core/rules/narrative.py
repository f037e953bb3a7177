"""Change-request narrative: a human-readable reason why a PR is currently blocked.

Rules are evaluated in precedence order and the first match wins:

  1. new_commits_after_approval: the PR author pushed after the latest
     privileged approval (needs commit history; best effort).
  2. new_commit_from_author: a review was dismissed, a non-privileged
     approval exists, a privileged reviewer left feedback, and backend
     approval is not granted.
  3. changes_requested / new_comment_from_author: driven by the most recent
     privileged CHANGES_REQUESTED or COMMENTED review.
  4. none.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone
from typing import Union

from prgate_core.models import (
    BackendApproval,
    Comment,
    Commit,
    Narrative,
    NarrativeKind,
    PrivilegedReviewers,
    Review,
    ReviewState,
)
from prgate_core.rules.approval import non_privileged_approvers
from prgate_core.utils.timefmt import ensure_utc

logger = logging.getLogger(__name__)

# Commit history may be handed over already fetched, or as a zero-argument
# lookup that is only invoked when rule 1 actually needs it.
CommitSource = Union[Iterable[Commit], Callable[[], Iterable[Commit]], None]

_FEEDBACK_STATES = (ReviewState.CHANGES_REQUESTED, ReviewState.COMMENTED)
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _submitted(review: Review) -> datetime:
    return ensure_utc(review.submitted_at) or _EPOCH


def _is_authored_by(commit: Commit, author: str) -> bool:
    # The login is authoritative when GitHub linked the commit to an account;
    # the raw git author name is only consulted for unlinked commits.
    wanted = author.lower()
    if commit.author_login:
        return commit.author_login.lower() == wanted
    return bool(commit.author_name) and commit.author_name.lower() == wanted


def commits_after(commits: CommitSource, author: str, since: datetime) -> list[Commit]:
    """Commits by `author` strictly after `since`. Lookup failures yield []."""
    if commits is None:
        return []
    try:
        resolved = commits() if callable(commits) else commits
        return [
            c
            for c in resolved or ()
            if c.committed_at is not None and ensure_utc(c.committed_at) > since and _is_authored_by(c, author)
        ]
    except Exception as e:
        logger.warning("Commit history lookup failed (%s): %s; assuming no new commits", type(e).__name__, e)
        return []


def build_narrative(
    *,
    history: Sequence[Review],
    latest: Sequence[Review],
    reviewers: PrivilegedReviewers,
    pr_author: str,
    backend_status: BackendApproval,
    comments: Sequence[Comment] = (),
    commits: CommitSource = None,
) -> Narrative:
    # 1. New commits after the most recent privileged approval.
    privileged_approvals = [
        r for r in latest if r.state is ReviewState.APPROVED and r.author in reviewers and r.submitted_at
    ]
    if privileged_approvals and pr_author:
        approval = max(privileged_approvals, key=_submitted)
        pushed = commits_after(commits, pr_author, _submitted(approval))
        if pushed:
            return Narrative(
                NarrativeKind.NEW_COMMITS_AFTER_APPROVAL,
                f"@{pr_author} pushed {len(pushed)} commit(s) after @{approval.author} approved",
                at=_submitted(approval),
            )

    privileged_feedback = [
        r for r in history if r.state in _FEEDBACK_STATES and r.author in reviewers and r.author != pr_author
    ]

    # 2. A dismissal while a non-privileged approval stands and backend feedback is outstanding.
    if (
        any(r.state is ReviewState.DISMISSED for r in history)
        and non_privileged_approvers(latest, reviewers)
        and privileged_feedback
        and backend_status is not BackendApproval.APPROVED
    ):
        return Narrative(NarrativeKind.NEW_COMMIT_FROM_AUTHOR, f"@{pr_author} pushed changes after a review was dismissed")

    # 3. The most recent privileged feedback, unless its author has since approved.
    if not privileged_feedback:
        return Narrative()

    feedback = max(privileged_feedback, key=_submitted)
    since = _submitted(feedback)

    if any(r.author == feedback.author and r.state is ReviewState.APPROVED and _submitted(r) > since for r in history):
        return Narrative()

    replies = [ensure_utc(c.created_at) for c in comments if c.author == pr_author and ensure_utc(c.created_at) > since]
    replies += [_submitted(r) for r in history if r.author == pr_author and _submitted(r) > since]
    if replies:
        return Narrative(
            NarrativeKind.NEW_COMMENT_FROM_AUTHOR,
            f"@{pr_author} replied to @{feedback.author}",
            at=max(replies),
        )

    verb = "requested changes" if feedback.state is ReviewState.CHANGES_REQUESTED else "commented"
    return Narrative(NarrativeKind.CHANGES_REQUESTED, f"@{feedback.author} {verb}", at=ensure_utc(feedback.submitted_at))
