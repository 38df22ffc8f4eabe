from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per failed item (generation or delivery) or per step-level failure.
item=-1 marks a failure that is not tied to a single row (e.g. a parse error).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        operation: Workflow step (IMPORT, GENERATE, SEND)
        item: 0-based item index within the run, -1 when not row specific
        recipient: Recipient address or source file name
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Human readable error message
    """
    timestamp: str  # ISO8601 UTC
    operation: str
    item: int
    recipient: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(operation: str, item: int, recipient: str, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            operation=operation,
            item=item,
            recipient=recipient,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # dataclass -> dict なので追加キーは出ない
        return json.dumps(asdict(self), ensure_ascii=False)
