"""Webhook event normalisation.

Delivery, signature checks and queueing belong to the ingestion service in
front of prgate. What it hands over is the `X-GitHub-Event` name and the JSON
payload; parse_event() turns that into a closed set of event kinds that the
reconciler handles with one exhaustive match.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from prgate_core.models import PullRequest, Review, ReviewState
from prgate_core.utils.timefmt import from_iso


class EventKind(str, Enum):
    PULL_REQUEST_UPDATED = "pull_request_updated"  # opened / reopened / synchronize / edited / ready / draft
    PULL_REQUEST_CLOSED = "pull_request_closed"
    REVIEW_CHANGED = "review_changed"  # submitted / edited / dismissed
    CHECKS_CHANGED = "checks_changed"  # check_suite, check_run
    STATUS_CHANGED = "status_changed"  # legacy commit status, identified by SHA only
    PING = "ping"
    IGNORED = "ignored"


_PR_UPDATE_ACTIONS = {"opened", "reopened", "synchronize", "edited", "ready_for_review", "converted_to_draft"}
_REVIEW_ACTIONS = {"submitted", "edited", "dismissed"}
_CHECK_SUITE_ACTIONS = {"completed", "requested", "rerequested"}
_CHECK_RUN_ACTIONS = {"created", "completed", "rerequested"}


@dataclass(frozen=True)
class WebhookEvent:
    kind: EventKind
    repository: str = ""
    numbers: tuple[int, ...] = ()
    head_sha: str = ""
    pull_request: PullRequest | None = None
    review: Review | None = None
    details: dict = field(default_factory=dict)


def _pull_request_from_payload(repository: str, data: dict) -> PullRequest:
    if data.get("state") == "closed":
        state = "merged" if data.get("merged") else "closed"
    else:
        state = data.get("state") or "open"
    return PullRequest(
        repository=repository,
        number=int(data["number"]),
        github_id=data.get("id"),
        title=data.get("title") or "",
        author=(data.get("user") or {}).get("login") or "ghost",
        state=state,
        draft=bool(data.get("draft")),
        labels=[label.get("name", "") for label in data.get("labels") or []],
        head_sha=(data.get("head") or {}).get("sha") or "",
        base_ref=(data.get("base") or {}).get("ref") or "",
        url=data.get("html_url") or "",
        created_at=from_iso(data.get("created_at")),
        updated_at=from_iso(data.get("updated_at")),
    )


def _review_from_payload(data: dict) -> Review:
    return Review(
        id=int(data["id"]),
        author=(data.get("user") or {}).get("login") or "ghost",
        state=ReviewState.parse(data.get("state")),
        submitted_at=from_iso(data.get("submitted_at")),
    )


def _pr_numbers(container: dict) -> tuple[int, ...]:
    return tuple(int(pr["number"]) for pr in container.get("pull_requests") or [] if pr.get("number"))


def parse_event(event_name: str, payload: dict) -> WebhookEvent:
    """Map a GitHub webhook delivery onto a WebhookEvent. Unknown events become IGNORED."""
    repository = (payload.get("repository") or {}).get("full_name") or ""
    action = payload.get("action") or ""

    if event_name == "ping":
        return WebhookEvent(EventKind.PING, repository, details={"zen": payload.get("zen", "")})

    if event_name == "pull_request":
        pr = _pull_request_from_payload(repository, payload["pull_request"])
        if action == "closed":
            return WebhookEvent(EventKind.PULL_REQUEST_CLOSED, repository, (pr.number,), pr.head_sha, pull_request=pr)
        if action in _PR_UPDATE_ACTIONS:
            return WebhookEvent(EventKind.PULL_REQUEST_UPDATED, repository, (pr.number,), pr.head_sha, pull_request=pr)

    elif event_name == "pull_request_review" and action in _REVIEW_ACTIONS:
        pr = _pull_request_from_payload(repository, payload["pull_request"])
        return WebhookEvent(
            EventKind.REVIEW_CHANGED,
            repository,
            (pr.number,),
            pr.head_sha,
            pull_request=pr,
            review=_review_from_payload(payload["review"]),
        )

    elif event_name == "check_suite" and action in _CHECK_SUITE_ACTIONS:
        suite = payload.get("check_suite") or {}
        return WebhookEvent(EventKind.CHECKS_CHANGED, repository, _pr_numbers(suite), suite.get("head_sha") or "")

    elif event_name == "check_run" and action in _CHECK_RUN_ACTIONS:
        run = payload.get("check_run") or {}
        return WebhookEvent(
            EventKind.CHECKS_CHANGED,
            repository,
            _pr_numbers(run),
            run.get("head_sha") or "",
            details={"check": run.get("name", "")},
        )

    elif event_name == "status":
        return WebhookEvent(
            EventKind.STATUS_CHANGED,
            repository,
            head_sha=payload.get("sha") or "",
            details={"context": payload.get("context", ""), "state": payload.get("state", "")},
        )

    return WebhookEvent(EventKind.IGNORED, repository, details={"event": event_name, "action": action})
