from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""Per-item dispatch outcome.

Each DispatchResult is tied to its input index, so aggregated results keep the
original input order regardless of completion order inside a batch.
"""

__all__ = [
    "DispatchResult",
    "DispatchSummary",
]


@dataclass(frozen=True)
class DispatchResult:
    index: int
    item: Any
    success: bool
    result: Any = None
    error: str | None = None


@dataclass(frozen=True)
class DispatchSummary:
    """Aggregated counts for one dispatch run (SUMMARY line input)."""
    total: int
    success: int
    failed: int
    elapsed_seconds: float

    @classmethod
    def from_results(cls, results: list[DispatchResult], elapsed_seconds: float) -> DispatchSummary:
        ok = sum(1 for r in results if r.success)
        return cls(
            total=len(results),
            success=ok,
            failed=len(results) - ok,
            elapsed_seconds=elapsed_seconds,
        )
