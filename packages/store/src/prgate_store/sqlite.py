"""SQLiteStore — file-based store shared by every refresh worker.

Concurrency model:
- One connection per thread (sqlite3 connections must not be shared across
  threads mid-transaction). WAL journaling lets readers proceed while a
  writer holds the lock, and they always see the last committed state.
- pr_transaction() takes an in-process lock striped by (repository, number)
  and then a `BEGIN IMMEDIATE` write transaction. The first serializes threads
  refreshing the same PR; the second serializes writers across processes.
  A replace-all of reviews/checks, the classification read and the derived
  field write therefore commit together or not at all.

Schema:
  pull_requests          — one row per tracked PR: metadata, counters, derived fields
  reviews / checks / comments — child collections, replaced wholesale on refresh
  privileged_reviewers   — current backend review group membership
  store_meta             — small key/value table (reviewer snapshot version)
  leases                 — named, expiring mutual-exclusion leases for full scans
  discrepancies          — verification findings
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from prgate_core.models import (
    ApprovalSummary,
    BackendApproval,
    CheckResult,
    CheckStatus,
    Comment,
    DerivedState,
    Narrative,
    NarrativeKind,
    PrivilegedReviewers,
    PullRequest,
    Review,
    ReviewState,
)
from prgate_core.rules.checks import CheckSummary
from prgate_core.utils.timefmt import from_iso, to_iso, utc_now
from prgate_store.base import BaseStore
from prgate_store.models import DiscrepancyRecord

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pull_requests (
    id                           INTEGER PRIMARY KEY AUTOINCREMENT,
    repository                   TEXT NOT NULL,
    number                       INTEGER NOT NULL,
    github_id                    INTEGER,
    title                        TEXT DEFAULT '',
    author                       TEXT DEFAULT '',
    state                        TEXT DEFAULT 'open',
    draft                        INTEGER DEFAULT 0,
    labels_json                  TEXT DEFAULT '[]',
    head_sha                     TEXT DEFAULT '',
    base_ref                     TEXT DEFAULT '',
    url                          TEXT DEFAULT '',
    created_at                   TEXT,
    updated_at                   TEXT,
    ci_status                    TEXT DEFAULT 'unknown',
    total_checks                 INTEGER DEFAULT 0,
    successful_checks            INTEGER DEFAULT 0,
    failed_checks                INTEGER DEFAULT 0,
    pending_checks               INTEGER DEFAULT 0,
    checks_refreshed_at          TEXT,
    backend_approval_status      TEXT DEFAULT 'not_approved',
    ready_for_backend_review     INTEGER DEFAULT 0,
    ready_for_backend_review_at  TEXT,
    fully_approved               INTEGER DEFAULT 0,
    approved_at                  TEXT,
    awaiting_author_changes      INTEGER DEFAULT 0,
    narrative_kind               TEXT DEFAULT 'none',
    narrative_detail             TEXT DEFAULT '',
    narrative_at                 TEXT,
    approved_users_json          TEXT DEFAULT '[]',
    changes_requested_users_json TEXT DEFAULT '[]',
    review_status                TEXT DEFAULT 'pending',
    exempt_from_backend_review   INTEGER DEFAULT 0,
    reviewers_version            INTEGER DEFAULT 0,
    classified_at                TEXT,
    UNIQUE (repository, number)
);
CREATE INDEX IF NOT EXISTS idx_pull_requests_state ON pull_requests (repository, state);
CREATE INDEX IF NOT EXISTS idx_pull_requests_sha   ON pull_requests (repository, head_sha);

CREATE TABLE IF NOT EXISTS reviews (
    pull_request_id  INTEGER NOT NULL REFERENCES pull_requests (id) ON DELETE CASCADE,
    github_id        INTEGER NOT NULL,
    author           TEXT NOT NULL,
    state            TEXT NOT NULL,
    submitted_at     TEXT,
    PRIMARY KEY (pull_request_id, github_id)
);

CREATE TABLE IF NOT EXISTS checks (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    pull_request_id  INTEGER NOT NULL REFERENCES pull_requests (id) ON DELETE CASCADE,
    name             TEXT NOT NULL,
    status           TEXT NOT NULL,
    required         INTEGER DEFAULT 0,
    suite_name       TEXT,
    url              TEXT,
    description      TEXT
);
CREATE INDEX IF NOT EXISTS idx_checks_pr ON checks (pull_request_id);

CREATE TABLE IF NOT EXISTS comments (
    pull_request_id  INTEGER NOT NULL REFERENCES pull_requests (id) ON DELETE CASCADE,
    github_id        INTEGER NOT NULL,
    author           TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    PRIMARY KEY (pull_request_id, github_id)
);

CREATE TABLE IF NOT EXISTS privileged_reviewers (
    username    TEXT PRIMARY KEY,
    fetched_at  TEXT
);

CREATE TABLE IF NOT EXISTS store_meta (
    key    TEXT PRIMARY KEY,
    value  TEXT
);

CREATE TABLE IF NOT EXISTS leases (
    name        TEXT PRIMARY KEY,
    holder      TEXT NOT NULL,
    expires_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS discrepancies (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    repository   TEXT NOT NULL,
    pr_number    INTEGER NOT NULL,
    detected_at  TEXT NOT NULL,
    issues_json  TEXT DEFAULT '[]',
    corrected    INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_discrepancies_repo ON discrepancies (repository);
"""

_REVIEWERS_VERSION_KEY = "reviewers_version"


class SQLiteStore(BaseStore):
    """Stores tracked PRs in a local SQLite database file.

    The database file path defaults to `.prgate.db` in the current working
    directory. Configure via .prgate.yml: `store_path: /path/to/prgate.db`.
    Use a real file: with ":memory:" every thread would get its own database.
    """

    def __init__(self, db_path: str = ".prgate.db", timeout: float = 30.0):
        self._db_path = db_path
        self._timeout = timeout
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._guard = threading.Lock()
        self._pr_locks = tuple(threading.RLock() for _ in range(_LOCK_STRIPES))
        self._conn.executescript(_SCHEMA)

    # ------------------------------------------------------------------ #
    # Connections and transactions                                        #
    # ------------------------------------------------------------------ #

    @property
    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            # isolation_level=None: transactions are opened explicitly below.
            conn = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
            with self._guard:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        if conn.in_transaction:
            # Already inside pr_transaction(); the outer block commits.
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()

    def _lock_for(self, repository: str, number: int) -> threading.RLock:
        # Fixed pool; PRs that land on the same stripe also serialize with each other.
        return self._pr_locks[hash((repository, number)) % _LOCK_STRIPES]

    @contextmanager
    def pr_transaction(self, repository: str, number: int) -> Iterator[None]:
        with self._lock_for(repository, number):
            with self._write():
                yield

    def close(self) -> None:
        with self._guard:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()

    # ------------------------------------------------------------------ #
    # Pull requests                                                       #
    # ------------------------------------------------------------------ #

    def _pr_id(self, conn: sqlite3.Connection, repository: str, number: int) -> int:
        row = conn.execute(
            "SELECT id FROM pull_requests WHERE repository=? AND number=?", (repository, number)
        ).fetchone()
        if row is None:
            raise LookupError(f"{repository}#{number} is not tracked")
        return row["id"]

    def upsert_pull_request(self, pr: PullRequest) -> None:
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO pull_requests
                  (repository, number, github_id, title, author, state, draft,
                   labels_json, head_sha, base_ref, url, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (repository, number) DO UPDATE SET
                  github_id=COALESCE(excluded.github_id, github_id),
                  title=excluded.title,
                  author=excluded.author,
                  state=excluded.state,
                  draft=excluded.draft,
                  labels_json=excluded.labels_json,
                  head_sha=excluded.head_sha,
                  base_ref=excluded.base_ref,
                  url=excluded.url,
                  created_at=COALESCE(excluded.created_at, created_at),
                  updated_at=COALESCE(excluded.updated_at, updated_at)
                """,
                (
                    pr.repository,
                    pr.number,
                    pr.github_id,
                    pr.title,
                    pr.author,
                    pr.state,
                    int(pr.draft),
                    json.dumps(list(pr.labels)),
                    pr.head_sha,
                    pr.base_ref,
                    pr.url,
                    to_iso(pr.created_at),
                    to_iso(pr.updated_at),
                ),
            )

    def get_pull_request(self, repository: str, number: int) -> PullRequest | None:
        row = self._conn.execute(
            "SELECT * FROM pull_requests WHERE repository=? AND number=?", (repository, number)
        ).fetchone()
        return self._row_to_pull_request(row) if row is not None else None

    def list_pull_requests(self, repository: str | None = None, state: str | None = "open") -> list[PullRequest]:
        clauses, params = [], []
        if repository is not None:
            clauses.append("repository=?")
            params.append(repository)
        if state is not None:
            clauses.append("state=?")
            params.append(state)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT * FROM pull_requests {where} ORDER BY updated_at DESC, number DESC", params
        ).fetchall()
        return [self._row_to_pull_request(r) for r in rows]

    def find_by_head_sha(self, repository: str, head_sha: str) -> list[PullRequest]:
        rows = self._conn.execute(
            "SELECT * FROM pull_requests WHERE repository=? AND head_sha=? AND state='open'",
            (repository, head_sha),
        ).fetchall()
        return [self._row_to_pull_request(r) for r in rows]

    def delete_pull_request(self, repository: str, number: int) -> bool:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM pull_requests WHERE repository=? AND number=?", (repository, number))
            return cur.rowcount > 0

    # ------------------------------------------------------------------ #
    # Raw collections                                                     #
    # ------------------------------------------------------------------ #

    def replace_reviews(self, repository: str, number: int, reviews: list[Review]) -> None:
        with self._write() as conn:
            pr_id = self._pr_id(conn, repository, number)
            conn.execute("DELETE FROM reviews WHERE pull_request_id=?", (pr_id,))
            # OR REPLACE keeps the (pull_request_id, github_id) pair unique even if
            # the source returned the same review twice.
            conn.executemany(
                "INSERT OR REPLACE INTO reviews (pull_request_id, github_id, author, state, submitted_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [(pr_id, r.id, r.author, r.state.value, to_iso(r.submitted_at)) for r in reviews],
            )

    def upsert_review(self, repository: str, number: int, review: Review) -> None:
        with self._write() as conn:
            pr_id = self._pr_id(conn, repository, number)
            conn.execute(
                """
                INSERT INTO reviews (pull_request_id, github_id, author, state, submitted_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (pull_request_id, github_id) DO UPDATE SET
                  author=excluded.author, state=excluded.state, submitted_at=excluded.submitted_at
                """,
                (pr_id, review.id, review.author, review.state.value, to_iso(review.submitted_at)),
            )

    def list_reviews(self, repository: str, number: int) -> list[Review]:
        rows = self._conn.execute(
            """
            SELECT r.* FROM reviews r JOIN pull_requests p ON p.id = r.pull_request_id
            WHERE p.repository=? AND p.number=?
            ORDER BY r.submitted_at, r.github_id
            """,
            (repository, number),
        ).fetchall()
        return [
            Review(
                id=r["github_id"],
                author=r["author"],
                state=ReviewState.parse(r["state"]),
                submitted_at=from_iso(r["submitted_at"]),
            )
            for r in rows
        ]

    def replace_checks(
        self,
        repository: str,
        number: int,
        checks: list[CheckResult],
        summary: CheckSummary,
        refreshed_at: datetime,
    ) -> None:
        with self._write() as conn:
            pr_id = self._pr_id(conn, repository, number)
            conn.execute("DELETE FROM checks WHERE pull_request_id=?", (pr_id,))
            conn.executemany(
                "INSERT INTO checks (pull_request_id, name, status, required, suite_name, url, description) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (pr_id, c.name, c.status.value, int(c.required), c.suite_name, c.url, c.description)
                    for c in checks
                ],
            )
            conn.execute(
                """
                UPDATE pull_requests SET
                  ci_status=?, total_checks=?, successful_checks=?, failed_checks=?,
                  pending_checks=?, checks_refreshed_at=?
                WHERE id=?
                """,
                (
                    summary.overall_status,
                    summary.total,
                    summary.successful,
                    summary.failed,
                    summary.pending,
                    to_iso(refreshed_at),
                    pr_id,
                ),
            )

    def list_checks(self, repository: str, number: int) -> list[CheckResult]:
        rows = self._conn.execute(
            """
            SELECT c.* FROM checks c JOIN pull_requests p ON p.id = c.pull_request_id
            WHERE p.repository=? AND p.number=? ORDER BY c.id
            """,
            (repository, number),
        ).fetchall()
        return [
            CheckResult(
                name=r["name"],
                status=CheckStatus.parse(r["status"]),
                required=bool(r["required"]),
                suite_name=r["suite_name"],
                url=r["url"],
                description=r["description"],
            )
            for r in rows
        ]

    def replace_comments(self, repository: str, number: int, comments: list[Comment]) -> None:
        with self._write() as conn:
            pr_id = self._pr_id(conn, repository, number)
            conn.execute("DELETE FROM comments WHERE pull_request_id=?", (pr_id,))
            conn.executemany(
                "INSERT OR REPLACE INTO comments (pull_request_id, github_id, author, created_at) VALUES (?, ?, ?, ?)",
                [(pr_id, c.id, c.author, to_iso(c.created_at)) for c in comments],
            )

    def list_comments(self, repository: str, number: int) -> list[Comment]:
        rows = self._conn.execute(
            """
            SELECT c.* FROM comments c JOIN pull_requests p ON p.id = c.pull_request_id
            WHERE p.repository=? AND p.number=? ORDER BY c.created_at
            """,
            (repository, number),
        ).fetchall()
        return [Comment(id=r["github_id"], author=r["author"], created_at=from_iso(r["created_at"])) for r in rows]

    # ------------------------------------------------------------------ #
    # Derived state                                                       #
    # ------------------------------------------------------------------ #

    def save_derived(self, repository: str, number: int, derived: DerivedState) -> None:
        summary = derived.approval_summary
        with self._write() as conn:
            pr_id = self._pr_id(conn, repository, number)
            conn.execute(
                """
                UPDATE pull_requests SET
                  backend_approval_status=?, ready_for_backend_review=?, ready_for_backend_review_at=?,
                  fully_approved=?, approved_at=?, awaiting_author_changes=?,
                  narrative_kind=?, narrative_detail=?, narrative_at=?,
                  approved_users_json=?, changes_requested_users_json=?, review_status=?,
                  exempt_from_backend_review=?, reviewers_version=?, classified_at=?
                WHERE id=?
                """,
                (
                    derived.backend_approval_status.value,
                    int(derived.ready_for_backend_review),
                    to_iso(derived.ready_for_backend_review_at),
                    int(derived.fully_approved),
                    to_iso(derived.approved_at),
                    int(derived.awaiting_author_changes),
                    derived.narrative.kind.value,
                    derived.narrative.detail,
                    to_iso(derived.narrative.at),
                    json.dumps(list(summary.approved_users)),
                    json.dumps(list(summary.changes_requested_users)),
                    summary.status,
                    int(derived.exempt_from_backend_review),
                    derived.reviewers_version,
                    to_iso(derived.classified_at or utc_now()),
                    pr_id,
                ),
            )

    # ------------------------------------------------------------------ #
    # Privileged reviewers                                                #
    # ------------------------------------------------------------------ #

    def _reviewers_version(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT value FROM store_meta WHERE key=?", (_REVIEWERS_VERSION_KEY,)).fetchone()
        return int(row["value"]) if row is not None else 0

    def get_privileged_reviewers(self) -> PrivilegedReviewers:
        conn = self._conn
        members = frozenset(r["username"] for r in conn.execute("SELECT username FROM privileged_reviewers"))
        return PrivilegedReviewers(members=members, version=self._reviewers_version(conn))

    def replace_privileged_reviewers(self, members: set[str]) -> tuple[PrivilegedReviewers, bool]:
        wanted = frozenset(m for m in members if m)
        now_iso = to_iso(utc_now())
        with self._write() as conn:
            current = frozenset(r["username"] for r in conn.execute("SELECT username FROM privileged_reviewers"))
            version = self._reviewers_version(conn)
            conn.executemany(
                "INSERT INTO privileged_reviewers (username, fetched_at) VALUES (?, ?) "
                "ON CONFLICT (username) DO UPDATE SET fetched_at=excluded.fetched_at",
                [(m, now_iso) for m in sorted(wanted)],
            )
            changed = current != wanted
            if changed:
                conn.executemany(
                    "DELETE FROM privileged_reviewers WHERE username=?", [(m,) for m in sorted(current - wanted)]
                )
                version += 1
                conn.execute(
                    "INSERT INTO store_meta (key, value) VALUES (?, ?) "
                    "ON CONFLICT (key) DO UPDATE SET value=excluded.value",
                    (_REVIEWERS_VERSION_KEY, str(version)),
                )
        return PrivilegedReviewers(members=wanted, version=version), changed

    # ------------------------------------------------------------------ #
    # Leases                                                              #
    # ------------------------------------------------------------------ #

    def acquire_lease(self, name: str, holder: str, ttl_seconds: int) -> bool:
        now = utc_now()
        with self._write() as conn:
            row = conn.execute("SELECT holder, expires_at FROM leases WHERE name=?", (name,)).fetchone()
            if row is not None and from_iso(row["expires_at"]) > now:
                return False
            if row is not None:
                logger.warning("Taking over expired lease %r from %s", name, row["holder"])
            conn.execute(
                "INSERT INTO leases (name, holder, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT (name) DO UPDATE SET holder=excluded.holder, expires_at=excluded.expires_at",
                (name, holder, to_iso(now + timedelta(seconds=ttl_seconds))),
            )
            return True

    def renew_lease(self, name: str, holder: str, ttl_seconds: int) -> bool:
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE leases SET expires_at=? WHERE name=? AND holder=?",
                (to_iso(utc_now() + timedelta(seconds=ttl_seconds)), name, holder),
            )
            return cur.rowcount > 0

    def release_lease(self, name: str, holder: str) -> None:
        with self._write() as conn:
            conn.execute("DELETE FROM leases WHERE name=? AND holder=?", (name, holder))

    # ------------------------------------------------------------------ #
    # Discrepancy log                                                     #
    # ------------------------------------------------------------------ #

    def record_discrepancy(
        self,
        repository: str,
        pr_number: int,
        issues: list[str],
        corrected: bool = False,
        detected_at: datetime | None = None,
    ) -> DiscrepancyRecord:
        record = DiscrepancyRecord(
            repository=repository,
            pr_number=pr_number,
            detected_at=to_iso(detected_at or utc_now()),
            issues=list(issues),
            corrected=corrected,
        )
        with self._write() as conn:
            conn.execute(
                "INSERT INTO discrepancies (repository, pr_number, detected_at, issues_json, corrected) "
                "VALUES (?, ?, ?, ?, ?)",
                (record.repository, record.pr_number, record.detected_at, json.dumps(record.issues), int(record.corrected)),
            )
        return record

    def list_discrepancies(self, repository: str | None = None, limit: int = 50) -> list[DiscrepancyRecord]:
        if repository is not None:
            rows = self._conn.execute(
                "SELECT * FROM discrepancies WHERE repository=? ORDER BY id DESC LIMIT ?", (repository, limit)
            ).fetchall()
        else:
            rows = self._conn.execute("SELECT * FROM discrepancies ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [
            DiscrepancyRecord(
                repository=r["repository"],
                pr_number=r["pr_number"],
                detected_at=r["detected_at"],
                issues=json.loads(r["issues_json"] or "[]"),
                corrected=bool(r["corrected"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------ #
    # Row mapping                                                         #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _row_to_pull_request(row: sqlite3.Row) -> PullRequest:
        derived = None
        if row["classified_at"]:
            derived = DerivedState(
                backend_approval_status=BackendApproval(row["backend_approval_status"]),
                ready_for_backend_review=bool(row["ready_for_backend_review"]),
                ready_for_backend_review_at=from_iso(row["ready_for_backend_review_at"]),
                fully_approved=bool(row["fully_approved"]),
                approved_at=from_iso(row["approved_at"]),
                awaiting_author_changes=bool(row["awaiting_author_changes"]),
                narrative=Narrative(
                    NarrativeKind(row["narrative_kind"]), row["narrative_detail"] or "", from_iso(row["narrative_at"])
                ),
                approval_summary=ApprovalSummary(
                    approved_users=tuple(json.loads(row["approved_users_json"] or "[]")),
                    changes_requested_users=tuple(json.loads(row["changes_requested_users_json"] or "[]")),
                    status=row["review_status"] or "pending",
                ),
                exempt_from_backend_review=bool(row["exempt_from_backend_review"]),
                reviewers_version=row["reviewers_version"] or 0,
                classified_at=from_iso(row["classified_at"]),
            )
        return PullRequest(
            repository=row["repository"],
            number=row["number"],
            github_id=row["github_id"],
            title=row["title"] or "",
            author=row["author"] or "",
            state=row["state"] or "open",
            draft=bool(row["draft"]),
            labels=json.loads(row["labels_json"] or "[]"),
            head_sha=row["head_sha"] or "",
            base_ref=row["base_ref"] or "",
            url=row["url"] or "",
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            ci_status=row["ci_status"] or "unknown",
            total_checks=row["total_checks"] or 0,
            successful_checks=row["successful_checks"] or 0,
            failed_checks=row["failed_checks"] or 0,
            pending_checks=row["pending_checks"] or 0,
            checks_refreshed_at=from_iso(row["checks_refreshed_at"]),
            derived=derived,
        )
