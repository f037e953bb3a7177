"""CI check de-duplication and counting.

Raw check data arrives from two GitHub APIs (check runs and legacy commit
statuses) and frequently repeats the same logical check across a workflow
suite. Within a suite only the most relevant result is kept, and every
counter is computed over that de-duplicated set.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from prgate_core.models import CheckResult, CheckStatus

_REQUIRED_WEIGHT = 1000
_FAILING_WEIGHT = 100
_SUCCESS_WEIGHT = 10


@dataclass(frozen=True)
class CheckSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    pending: int = 0
    overall_status: str = "unknown"


def suite_name_for(name: str | None) -> str | None:
    """Derive a suite grouping key from a check name ("Code Checks / Lint" → "Code Checks")."""
    if not name:
        return None
    if " / " in name:
        return name.split(" / ", 1)[0]
    return name


def _priority(check: CheckResult) -> int:
    priority = 0
    if check.required:
        priority += _REQUIRED_WEIGHT
    if check.status.is_failing:
        priority += _FAILING_WEIGHT
    if check.status is CheckStatus.SUCCESS:
        priority += _SUCCESS_WEIGHT
    return priority


def deduplicate_by_suite(checks: Iterable[CheckResult]) -> list[CheckResult]:
    """Keep the highest-priority check per suite: required > failing > succeeding.

    Checks without a suite name form a suite of their own, keyed by name.
    On a priority tie the first check seen wins.
    """
    best: dict[str, CheckResult] = {}
    for check in checks:
        key = check.suite_name or f"\x00{check.name}"
        current = best.get(key)
        if current is None or _priority(check) > _priority(current):
            best[key] = check
    return list(best.values())


def failing_checks(checks: Iterable[CheckResult]) -> list[CheckResult]:
    return [c for c in checks if c.status.is_failing]


def overall_status(checks: Sequence[CheckResult]) -> str:
    """Required checks decide when present; otherwise any failure wins, then any success."""
    if not checks:
        return "unknown"

    required = [c for c in checks if c.required]
    if required:
        if any(c.status.is_failing for c in required):
            return "failure"
        if all(c.status is CheckStatus.SUCCESS for c in required):
            return "success"
        return "pending"

    if any(c.status.is_failing for c in checks):
        return "failure"
    if any(c.status is CheckStatus.SUCCESS for c in checks):
        return "success"
    return "pending"


def summarize_checks(checks: Iterable[CheckResult]) -> tuple[list[CheckResult], CheckSummary]:
    """De-duplicate raw checks and count them. Returns (deduplicated checks, summary)."""
    deduped = deduplicate_by_suite(checks)
    summary = CheckSummary(
        total=len(deduped),
        successful=sum(1 for c in deduped if c.status is CheckStatus.SUCCESS),
        failed=sum(1 for c in deduped if c.status.is_failing),
        pending=sum(1 for c in deduped if c.status is CheckStatus.PENDING),
        overall_status=overall_status(deduped),
    )
    return deduped, summary
