"""Store-only record types.

Domain types (PullRequest, Review, ...) live in prgate_core.models; the store
persists those directly. What is defined here exists only for operational
reporting.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DiscrepancyRecord:
    """A mismatch between stored and freshly computed review state, found by verification.

    Recorded by the verification pass. When `corrected` is set the stored PR
    has already been fixed; the log still shows what was wrong.
    """

    repository: str
    pr_number: int
    detected_at: str  # ISO-8601 UTC timestamp
    issues: list[str] = field(default_factory=list)
    corrected: bool = False
