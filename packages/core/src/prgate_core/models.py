"""Domain types shared by the classifiers, the GitHub source and the store.

Everything here is a plain value object. Raw data (reviews, checks, comments,
commits) is what the GitHub source produces and the store persists; derived
data (DerivedState, Narrative) is only ever produced by prgate_core.classify.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from prgate_core.utils.timefmt import time_ago


class ReviewState(str, Enum):
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    DISMISSED = "DISMISSED"
    PENDING = "PENDING"

    @classmethod
    def parse(cls, value: str | None) -> ReviewState:
        """Map GitHub's review state string onto the enum; unknown values become PENDING."""
        try:
            return cls((value or "").upper())
        except ValueError:
            return cls.PENDING


class CheckStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    ERROR = "error"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> CheckStatus:
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_failing(self) -> bool:
        return self in _FAILING_STATUSES


_FAILING_STATUSES = frozenset({CheckStatus.FAILURE, CheckStatus.ERROR, CheckStatus.CANCELLED})


class BackendApproval(str, Enum):
    APPROVED = "approved"
    NOT_APPROVED = "not_approved"


class NarrativeKind(str, Enum):
    NONE = "none"
    NEW_COMMITS_AFTER_APPROVAL = "new_commits_after_approval"
    NEW_COMMIT_FROM_AUTHOR = "new_commit_from_author"
    NEW_COMMENT_FROM_AUTHOR = "new_comment_from_author"
    CHANGES_REQUESTED = "changes_requested"


@dataclass(frozen=True)
class Review:
    """One reviewer's verdict at a point in time. `id` is GitHub's review id."""

    id: int
    author: str
    state: ReviewState
    submitted_at: datetime | None = None


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    required: bool = False
    suite_name: str | None = None
    url: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class Comment:
    """A PR conversation comment."""

    id: int
    author: str
    created_at: datetime


@dataclass(frozen=True)
class Commit:
    sha: str
    committed_at: datetime | None
    author_login: str | None = None
    author_name: str | None = None


@dataclass(frozen=True)
class PrivilegedReviewers:
    """Versioned, immutable snapshot of the backend review group.

    Passed explicitly into every classification so the classifiers never read
    membership from ambient state. `version` increases whenever the stored
    membership changes.
    """

    members: frozenset[str] = frozenset()
    version: int = 0

    def __contains__(self, username: object) -> bool:
        return username in self.members

    def __len__(self) -> int:
        return len(self.members)


@dataclass
class PullRequest:
    """A tracked pull request: stable identity, upstream metadata and persisted derived fields."""

    repository: str  # "owner/name"
    number: int
    github_id: int | None = None
    title: str = ""
    author: str = ""
    state: str = "open"  # "open" | "closed" | "merged"
    draft: bool = False
    labels: list[str] = field(default_factory=list)
    head_sha: str = ""
    base_ref: str = ""
    url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    # Check counters, recomputed from the de-duplicated check collection.
    ci_status: str = "unknown"
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    pending_checks: int = 0
    checks_refreshed_at: datetime | None = None

    derived: DerivedState | None = None

    @property
    def is_open(self) -> bool:
        return self.state == "open"


@dataclass(frozen=True)
class PullRequestSnapshot:
    """Everything classify() needs for one PR, read in a single consistent view.

    `failing_checks` is None when the failing-check detail is unavailable
    (never fetched, or older than the configured TTL). An empty tuple means
    "fetched and nothing is failing".
    """

    pull_request: PullRequest
    reviews: tuple[Review, ...] = ()
    comments: tuple[Comment, ...] = ()
    failing_checks: tuple[CheckResult, ...] | None = None


@dataclass(frozen=True)
class Narrative:
    """Why a PR is blocked. `detail` is time-independent; `at` is when the blocking event happened."""

    kind: NarrativeKind = NarrativeKind.NONE
    detail: str = ""
    at: datetime | None = None

    def describe(self, now: datetime) -> str:
        """`detail` with the age of `at` appended, e.g. "@alice requested changes (3h ago)"."""
        if self.at is None:
            return self.detail
        return f"{self.detail} ({time_ago(self.at, now)})"

    def __bool__(self) -> bool:
        return self.kind is not NarrativeKind.NONE


@dataclass(frozen=True)
class ApprovalSummary:
    approved_users: tuple[str, ...] = ()
    changes_requested_users: tuple[str, ...] = ()
    status: str = "pending"  # "approved" | "changes_requested" | "pending"

    @property
    def approved_count(self) -> int:
        return len(self.approved_users)


@dataclass(frozen=True)
class DerivedState:
    """The full derived-state bundle returned by classify() for atomic persistence."""

    backend_approval_status: BackendApproval = BackendApproval.NOT_APPROVED
    ready_for_backend_review: bool = False
    ready_for_backend_review_at: datetime | None = None
    fully_approved: bool = False
    approved_at: datetime | None = None
    awaiting_author_changes: bool = False
    narrative: Narrative = field(default_factory=Narrative)
    approval_summary: ApprovalSummary = field(default_factory=ApprovalSummary)
    exempt_from_backend_review: bool = False
    reviewers_version: int = 0
    classified_at: datetime | None = None

    def same_state_as(self, other: DerivedState | None) -> bool:
        """True when both bundles carry identical derived values, ignoring `classified_at`."""
        if other is None:
            return False
        return (
            self.backend_approval_status == other.backend_approval_status
            and self.ready_for_backend_review == other.ready_for_backend_review
            and self.ready_for_backend_review_at == other.ready_for_backend_review_at
            and self.fully_approved == other.fully_approved
            and self.approved_at == other.approved_at
            and self.awaiting_author_changes == other.awaiting_author_changes
            and self.narrative == other.narrative
            and self.approval_summary == other.approval_summary
            and self.exempt_from_backend_review == other.exempt_from_backend_review
        )
