"""Abstract store interface.

The reconciliation controller and the CLI depend on BaseStore, not on a
concrete backend. A backend must provide two guarantees on top of plain
persistence:

- pr_transaction() serializes every mutation of one PR (across threads and,
  where the backend allows, across processes) and makes the writes inside it
  visible all at once, so a reader never sees a half-replaced review set.
- Leases expire, so a crashed holder cannot wedge a scheduled job forever.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prgate_core.models import (
        CheckResult,
        Comment,
        DerivedState,
        PrivilegedReviewers,
        PullRequest,
        Review,
    )
    from prgate_core.rules.checks import CheckSummary
    from prgate_store.models import DiscrepancyRecord


class BaseStore(ABC):
    """Pluggable persistence layer for tracked pull requests."""

    # ------------------------------------------------------------------ #
    # Pull requests                                                       #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def pr_transaction(self, repository: str, number: int) -> AbstractContextManager[None]:
        """Serialize and atomically commit every store call made inside the block for this PR."""

    @abstractmethod
    def upsert_pull_request(self, pr: PullRequest) -> None:
        """Create the PR or update its upstream metadata. Counters and derived fields are untouched."""

    @abstractmethod
    def get_pull_request(self, repository: str, number: int) -> PullRequest | None:
        """Return the PR with its counters and last derived state, or None."""

    @abstractmethod
    def list_pull_requests(self, repository: str | None = None, state: str | None = "open") -> list[PullRequest]:
        """Return PRs, most recently updated upstream first. Never raises for an unknown repo."""

    @abstractmethod
    def find_by_head_sha(self, repository: str, head_sha: str) -> list[PullRequest]:
        """Open PRs whose head commit is `head_sha`."""

    @abstractmethod
    def delete_pull_request(self, repository: str, number: int) -> bool:
        """Delete the PR and all its children. Returns False if it was not stored."""

    # ------------------------------------------------------------------ #
    # Raw collections                                                     #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def replace_reviews(self, repository: str, number: int, reviews: list[Review]) -> None:
        """Swap the full review collection for `reviews`."""

    @abstractmethod
    def upsert_review(self, repository: str, number: int, review: Review) -> None:
        """Insert or overwrite one review by its external id."""

    @abstractmethod
    def list_reviews(self, repository: str, number: int) -> list[Review]:
        """All stored reviews for the PR in submission order."""

    @abstractmethod
    def replace_checks(
        self,
        repository: str,
        number: int,
        checks: list[CheckResult],
        summary: CheckSummary,
        refreshed_at: datetime,
    ) -> None:
        """Swap the de-duplicated check collection and its counters."""

    @abstractmethod
    def list_checks(self, repository: str, number: int) -> list[CheckResult]:
        """The stored (de-duplicated) checks for the PR."""

    @abstractmethod
    def replace_comments(self, repository: str, number: int, comments: list[Comment]) -> None:
        """Swap the conversation comment collection."""

    @abstractmethod
    def list_comments(self, repository: str, number: int) -> list[Comment]:
        """Stored comments in creation order."""

    # ------------------------------------------------------------------ #
    # Derived state                                                       #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def save_derived(self, repository: str, number: int, derived: DerivedState) -> None:
        """Persist the bundle returned by classify()."""

    # ------------------------------------------------------------------ #
    # Privileged reviewers                                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_privileged_reviewers(self) -> PrivilegedReviewers:
        """The current versioned reviewer snapshot (empty, version 0, before the first refresh)."""

    @abstractmethod
    def replace_privileged_reviewers(self, members: set[str]) -> tuple[PrivilegedReviewers, bool]:
        """Replace membership. Returns the new snapshot and whether membership changed."""

    # ------------------------------------------------------------------ #
    # Leases and discrepancy log                                          #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def acquire_lease(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """Take the named lease unless an unexpired one exists, whoever holds it."""

    @abstractmethod
    def renew_lease(self, name: str, holder: str, ttl_seconds: int) -> bool:
        """Push the expiry out by `ttl_seconds`. False if `holder` no longer owns the lease."""

    @abstractmethod
    def release_lease(self, name: str, holder: str) -> None:
        """Release the lease if `holder` still owns it."""

    @abstractmethod
    def record_discrepancy(
        self,
        repository: str,
        pr_number: int,
        issues: list[str],
        corrected: bool = False,
        detected_at: datetime | None = None,
    ) -> DiscrepancyRecord:
        """Append a verification discrepancy to the log and return the stored record."""

    @abstractmethod
    def list_discrepancies(self, repository: str | None = None, limit: int = 50) -> list[DiscrepancyRecord]:
        """Most recent discrepancies first."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional. The default is a no-op so callers can always call close() safely.
        """
