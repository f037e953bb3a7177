from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (older PyGithub releases return naive UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def time_ago(moment: datetime, now: datetime) -> str:
    """Compact relative time: "just now", "5m ago", "3h ago", "2d ago", else "Jan 05"."""
    seconds = (ensure_utc(now) - ensure_utc(moment)).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{round(seconds / 60)}m ago"
    if seconds < 86400:
        return f"{round(seconds / 3600)}h ago"
    if seconds < 604800:
        return f"{round(seconds / 86400)}d ago"
    return moment.strftime("%b %d")
