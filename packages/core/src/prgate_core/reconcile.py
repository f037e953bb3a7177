"""Reconciliation controller: decides when to refresh, fetches, replaces and classifies.

Three refresh paths reach the same PR concurrently: webhook events, the
periodic repository poll and sampled verification. They all end in _apply(),
which performs the replace-all of raw collections, the classification read
and the derived-field write inside one store.pr_transaction(). Network calls
always happen before the transaction is opened.
"""

from __future__ import annotations

import logging
import os
import random
import socket
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from github import GithubException, UnknownObjectException

from prgate_core.classify import classify
from prgate_core.config import DEFAULT_CONFIG, VERIFY_STRATEGIES
from prgate_core.events import EventKind, WebhookEvent
from prgate_core.models import (
    CheckResult,
    Comment,
    Commit,
    DerivedState,
    PrivilegedReviewers,
    PullRequest,
    PullRequestSnapshot,
    Review,
    ReviewState,
)
from prgate_core.rules.approval import backend_approval_status
from prgate_core.rules.checks import failing_checks, summarize_checks
from prgate_core.rules.narrative import commits_after
from prgate_core.rules.reviews import latest_actionable_reviews, summarize_approvals
from prgate_core.utils.timefmt import ensure_utc, to_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    repository: str
    number: int
    derived: DerivedState | None = None
    deleted: bool = False
    changed: bool = False


@dataclass
class PollResult:
    repository: str
    refreshed: int = 0
    closed: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False  # another holder owns the poll lease
    stopped: bool = False  # should_stop() asked for an early exit


@dataclass
class VerificationReport:
    repository: str
    verified: int = 0
    discrepancies: dict[int, list[str]] = field(default_factory=dict)
    corrected: list[int] = field(default_factory=list)
    deleted: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class ReviewerRefresh:
    reviewers: PrivilegedReviewers
    changed: bool
    reclassified: int = 0


def _default_holder() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class Reconciler:
    """Keeps stored PR state consistent with GitHub.

    `store` is a prgate_store BaseStore; `source` is anything with the
    GitHubSource methods. `config` uses the keys of prgate_core.config.
    """

    def __init__(
        self,
        store,
        source,
        config: dict | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        holder: str | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.source = source
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self._clock = clock
        self.holder = holder or _default_holder()
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------ #
    # Classification on stored data                                       #
    # ------------------------------------------------------------------ #

    def _snapshot(self, repository: str, number: int, now: datetime) -> PullRequestSnapshot | None:
        pr = self.store.get_pull_request(repository, number)
        if pr is None:
            return None
        failing = None
        refreshed_at = ensure_utc(pr.checks_refreshed_at)
        if refreshed_at is not None and (now - refreshed_at).total_seconds() <= self.config["failing_checks_ttl"]:
            failing = tuple(failing_checks(self.store.list_checks(repository, number)))
        return PullRequestSnapshot(
            pull_request=pr,
            reviews=tuple(self.store.list_reviews(repository, number)),
            comments=tuple(self.store.list_comments(repository, number)),
            failing_checks=failing,
        )

    def _classify_locked(
        self, repository: str, number: int, now: datetime, commits: list[Commit] | None
    ) -> tuple[DerivedState | None, bool]:
        """Classify and persist. Must run inside store.pr_transaction()."""
        snapshot = self._snapshot(repository, number, now)
        if snapshot is None:
            return None, False
        previous = snapshot.pull_request.derived
        derived = classify(
            snapshot,
            self.store.get_privileged_reviewers(),
            previous=previous,
            now=now,
            commits=commits,
            infrastructure_checks=self.config["infrastructure_checks"],
            exempt_label=self.config["exempt_label"],
        )
        self.store.save_derived(repository, number, derived)
        return derived, not derived.same_state_as(previous)

    def _commit_history(
        self, repository: str, number: int, reviews: list[Review], reviewers: PrivilegedReviewers
    ) -> list[Commit] | None:
        """Commits for the narrative, fetched only while a privileged approval stands."""
        latest = latest_actionable_reviews(reviews)
        if not any(r.state is ReviewState.APPROVED and r.author in reviewers for r in latest):
            return None
        try:
            return self.source.fetch_commits(repository, number)
        except GithubException as e:
            logger.warning("Could not fetch commits for %s#%d: %s", repository, number, e)
            return None

    def reclassify(self, repository: str, number: int) -> DerivedState | None:
        """Rerun classification on stored data. Returns None for an untracked PR."""
        pr = self.store.get_pull_request(repository, number)
        if pr is None:
            return None
        commits = None
        if pr.is_open:
            commits = self._commit_history(
                repository, number, self.store.list_reviews(repository, number), self.store.get_privileged_reviewers()
            )
        with self.store.pr_transaction(repository, number):
            derived, _ = self._classify_locked(repository, number, self._clock(), commits)
        return derived

    def reclassify_open(self, repository: str | None = None) -> int:
        count = 0
        for pr in self.store.list_pull_requests(repository, state="open"):
            try:
                if self.reclassify(pr.repository, pr.number) is not None:
                    count += 1
            except GithubException as e:
                logger.error("Reclassification of %s#%d failed: %s", pr.repository, pr.number, e)
        logger.info("Reclassified %d open pull request(s)", count)
        return count

    # ------------------------------------------------------------------ #
    # Refresh                                                             #
    # ------------------------------------------------------------------ #

    def _apply(
        self,
        pr: PullRequest,
        reviews: list[Review],
        checks: list[CheckResult],
        comments: list[Comment],
        commits: list[Commit] | None,
    ) -> RefreshResult:
        now = self._clock()
        deduped, summary = summarize_checks(checks)
        with self.store.pr_transaction(pr.repository, pr.number):
            self.store.upsert_pull_request(pr)
            self.store.replace_reviews(pr.repository, pr.number, reviews)
            self.store.replace_checks(pr.repository, pr.number, deduped, summary, now)
            self.store.replace_comments(pr.repository, pr.number, comments)
            derived, changed = self._classify_locked(pr.repository, pr.number, now, commits)
        logger.debug(
            "Refreshed %s#%d: %d review(s), %d check(s), %d failing",
            pr.repository,
            pr.number,
            len(reviews),
            summary.total,
            summary.failed,
        )
        return RefreshResult(pr.repository, pr.number, derived=derived, changed=changed)

    def _delete(self, repository: str, number: int) -> RefreshResult:
        with self.store.pr_transaction(repository, number):
            deleted = self.store.delete_pull_request(repository, number)
        if deleted:
            logger.info("%s#%d no longer exists upstream; deleted", repository, number)
        return RefreshResult(repository, number, deleted=True)

    def refresh_pull_request(
        self, repository: str, number: int, pull_request: PullRequest | None = None
    ) -> RefreshResult:
        """Fetch everything for one PR and persist it with fresh derived state.

        `pull_request` skips the metadata fetch when the caller already has it
        (the poll's listing). A 404 deletes the stored PR; other GitHub errors
        propagate.
        """
        try:
            pr = pull_request or self.source.fetch_pull_request(repository, number)
            reviews = self.source.fetch_reviews(repository, number)
            checks = self.source.fetch_checks(repository, pr)
            comments = self.source.fetch_comments(repository, number)
        except UnknownObjectException:
            return self._delete(repository, number)

        commits = None
        if pr.is_open:
            commits = self._commit_history(repository, number, reviews, self.store.get_privileged_reviewers())
        return self._apply(pr, reviews, checks, comments, commits)

    def _record_closure(self, pr: PullRequest) -> DerivedState | None:
        with self.store.pr_transaction(pr.repository, pr.number):
            self.store.upsert_pull_request(pr)
            derived, _ = self._classify_locked(pr.repository, pr.number, self._clock(), None)
        logger.info("%s#%d is %s", pr.repository, pr.number, pr.state)
        return derived

    # ------------------------------------------------------------------ #
    # Poll                                                                #
    # ------------------------------------------------------------------ #

    def poll_repository(self, repository: str, should_stop: Callable[[], bool] | None = None) -> PollResult:
        """Refresh every open PR, then reconcile stored-open PRs missing from the listing.

        Guarded by an expiring lease so overlapping schedules do not scan the
        same repository twice. `should_stop` is consulted between PRs.
        """
        result = PollResult(repository)
        lease = f"poll:{repository}"
        if not self.store.acquire_lease(lease, self.holder, self.config["lease_ttl"]):
            logger.info("Poll of %s already running elsewhere; skipping", repository)
            result.skipped = True
            return result

        try:
            live = self.source.list_open_pull_requests(repository, self.config.get("base_branch"))
            for pr in live:
                if not self._keep_polling(result, lease, should_stop):
                    break
                self._poll_one(result, repository, pr.number, pr)

            if not result.stopped:
                live_numbers = {pr.number for pr in live}
                for stored in self.store.list_pull_requests(repository, state="open"):
                    if stored.number in live_numbers:
                        continue
                    if not self._keep_polling(result, lease, should_stop):
                        break
                    self._reconcile_missing(result, repository, stored.number)
        except GithubException as e:
            logger.error("Listing pull requests for %s failed: %s", repository, e)
            result.errors.append(f"{repository}: {e}")
        finally:
            self.store.release_lease(lease, self.holder)

        logger.info(
            "Polled %s: %d refreshed, %d closed, %d deleted, %d error(s)%s",
            repository,
            result.refreshed,
            result.closed,
            result.deleted,
            len(result.errors),
            " (stopped early)" if result.stopped else "",
        )
        return result

    def _keep_polling(self, result: PollResult, lease: str, should_stop: Callable[[], bool] | None) -> bool:
        """Check for a stop request and extend the lease before the next PR."""
        if should_stop and should_stop():
            result.stopped = True
            return False
        if not self.store.renew_lease(lease, self.holder, self.config["lease_ttl"]):
            logger.warning("Lost lease %r mid-scan; stopping", lease)
            result.stopped = True
            return False
        return True

    def _poll_one(self, result: PollResult, repository: str, number: int, pr: PullRequest) -> None:
        try:
            refreshed = self.refresh_pull_request(repository, number, pull_request=pr)
        except GithubException as e:
            logger.warning("Refresh of %s#%d failed: %s", repository, number, e)
            result.errors.append(f"#{number}: {e}")
            return
        if refreshed.deleted:
            result.deleted += 1
        else:
            result.refreshed += 1

    def _reconcile_missing(self, result: PollResult, repository: str, number: int) -> None:
        try:
            fresh = self.source.fetch_pull_request(repository, number)
        except UnknownObjectException:
            self._delete(repository, number)
            result.deleted += 1
            return
        except GithubException as e:
            logger.warning("Could not reconcile %s#%d: %s", repository, number, e)
            result.errors.append(f"#{number}: {e}")
            return

        if fresh.is_open:
            # Still open but filtered out of the listing (retargeted base branch).
            self._poll_one(result, repository, number, fresh)
        else:
            self._record_closure(fresh)
            result.closed += 1

    # ------------------------------------------------------------------ #
    # Verification                                                        #
    # ------------------------------------------------------------------ #

    def _sample(self, repository: str, sample_size: int, strategy: str) -> list[PullRequest]:
        candidates = [pr for pr in self.store.list_pull_requests(repository, state="open") if not pr.draft]
        if strategy == "random":
            return self._rng.sample(candidates, min(sample_size, len(candidates)))
        return candidates[:sample_size]

    def _compare(
        self, pr: PullRequest, reviews: list[Review], reviewers: PrivilegedReviewers
    ) -> tuple[list[str], list[str]]:
        """Return (mismatches, informational issues) between stored and freshly fetched state."""
        latest = latest_actionable_reviews(reviews)
        expected = summarize_approvals(latest)
        expected_backend = backend_approval_status(latest, reviewers)
        stored = pr.derived

        mismatches = []
        if stored is None:
            mismatches.append("Never classified")
        else:
            stored_summary = stored.approval_summary
            if sorted(stored_summary.approved_users) != list(expected.approved_users):
                mismatches.append(
                    f"Approved users mismatch: stored={sorted(stored_summary.approved_users)}, "
                    f"expected={list(expected.approved_users)}"
                )
            if sorted(stored_summary.changes_requested_users) != list(expected.changes_requested_users):
                mismatches.append(
                    f"Changes requested users mismatch: stored={sorted(stored_summary.changes_requested_users)}, "
                    f"expected={list(expected.changes_requested_users)}"
                )
            if stored.backend_approval_status is not expected_backend:
                mismatches.append(
                    f"Backend approval status mismatch: stored={stored.backend_approval_status.value}, "
                    f"expected={expected_backend.value}"
                )

        info = []
        privileged_approvals = [
            r for r in latest if r.state is ReviewState.APPROVED and r.author in reviewers and r.submitted_at
        ]
        if privileged_approvals and pr.author:
            approval = max(privileged_approvals, key=lambda r: r.submitted_at)
            pushed = commits_after(
                lambda: self.source.fetch_commits(pr.repository, pr.number), pr.author, ensure_utc(approval.submitted_at)
            )
            if pushed:
                info.append(
                    f"Stale approval: backend approved by {approval.author} at {to_iso(approval.submitted_at)}, "
                    f"but {len(pushed)} commit(s) pushed after"
                )
        return mismatches, info

    def verify_sample(
        self, repository: str, sample_size: int | None = None, strategy: str | None = None
    ) -> VerificationReport:
        """Re-fetch reviews for a sample of open PRs, log mismatches and auto-correct them."""
        sample_size = sample_size if sample_size is not None else self.config["verify_sample_size"]
        strategy = strategy or self.config["verify_strategy"]
        if strategy not in VERIFY_STRATEGIES:
            raise ValueError(f"Unknown verification strategy: {strategy!r}. Choose one of {', '.join(VERIFY_STRATEGIES)}.")

        report = VerificationReport(repository)
        reviewers = self.store.get_privileged_reviewers()
        for pr in self._sample(repository, sample_size, strategy):
            try:
                reviews = self.source.fetch_reviews(repository, pr.number)
            except UnknownObjectException:
                self._delete(repository, pr.number)
                report.deleted.append(pr.number)
                continue
            except GithubException as e:
                logger.error("Error verifying %s#%d: %s", repository, pr.number, e)
                report.errors.append(f"#{pr.number}: {e}")
                continue

            report.verified += 1
            mismatches, info = self._compare(pr, reviews, reviewers)
            issues = mismatches + info
            if not issues:
                continue

            report.discrepancies[pr.number] = issues
            logger.warning("Discrepancies found for %s#%d", repository, pr.number)
            for issue in issues:
                logger.warning("  - %s", issue)

            corrected = False
            if mismatches:
                try:
                    self.refresh_pull_request(repository, pr.number)
                    corrected = True
                    report.corrected.append(pr.number)
                except GithubException as e:
                    logger.error("Auto-correction of %s#%d failed: %s", repository, pr.number, e)
                    report.errors.append(f"#{pr.number}: {e}")

            self.store.record_discrepancy(
                repository, pr.number, issues, corrected=corrected, detected_at=self._clock()
            )

        logger.info(
            "Verified %d pull request(s) in %s: %d with discrepancies, %d corrected",
            report.verified,
            repository,
            len(report.discrepancies),
            len(report.corrected),
        )
        return report

    # ------------------------------------------------------------------ #
    # Privileged reviewers                                                #
    # ------------------------------------------------------------------ #

    def refresh_privileged_reviewers(self) -> ReviewerRefresh:
        org, team = self.config.get("org"), self.config["team"]
        if not org:
            raise ValueError("No organization configured. Set `org` in .prgate.yml or track at least one repo.")
        members = self.source.list_privileged_reviewers(org, team)
        reviewers, changed = self.store.replace_privileged_reviewers(set(members))
        logger.info("Fetched %d member(s) of %s/%s (version %d)", len(reviewers), org, team, reviewers.version)
        refresh = ReviewerRefresh(reviewers, changed)
        if changed:
            refresh.reclassified = self.reclassify_open()
        return refresh

    # ------------------------------------------------------------------ #
    # Webhook events                                                      #
    # ------------------------------------------------------------------ #

    def _tracks(self, repository: str) -> bool:
        repos = self.config.get("repos") or []
        return not repos or repository in repos

    def handle_event(self, event: WebhookEvent) -> list[RefreshResult]:
        """Route one parsed webhook event to the refresh entry points."""
        if event.kind not in (EventKind.PING, EventKind.IGNORED) and not self._tracks(event.repository):
            logger.debug("Ignoring %s for untracked repository %s", event.kind.value, event.repository)
            return []

        match event.kind:
            case EventKind.PING:
                logger.info("Webhook ping received for %s", event.repository or "<unknown>")
                return []

            case EventKind.IGNORED:
                logger.debug("Ignoring webhook event %s", event.details)
                return []

            case EventKind.PULL_REQUEST_CLOSED:
                pr = event.pull_request
                if self.store.get_pull_request(pr.repository, pr.number) is None:
                    return []
                return [RefreshResult(pr.repository, pr.number, derived=self._record_closure(pr))]

            case EventKind.PULL_REQUEST_UPDATED:
                pr = event.pull_request
                return [self.refresh_pull_request(pr.repository, pr.number)]

            case EventKind.REVIEW_CHANGED:
                pr, review = event.pull_request, event.review
                if self.store.get_pull_request(pr.repository, pr.number) is not None:
                    # Record the delivered review immediately; the refresh below
                    # then replaces the whole collection with upstream truth.
                    with self.store.pr_transaction(pr.repository, pr.number):
                        self.store.upsert_review(pr.repository, pr.number, review)
                        self._classify_locked(pr.repository, pr.number, self._clock(), None)
                return [self.refresh_pull_request(pr.repository, pr.number)]

            case EventKind.CHECKS_CHANGED | EventKind.STATUS_CHANGED:
                numbers = list(event.numbers)
                if not numbers and event.head_sha:
                    numbers = [pr.number for pr in self.store.find_by_head_sha(event.repository, event.head_sha)]
                return [self.refresh_pull_request(event.repository, n) for n in numbers]
