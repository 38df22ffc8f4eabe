from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from ..errors import PitchStateError
from ..services.template import extract_placeholders

"""Pitch template and generated pitch models.

GeneratedPitch lifecycle:
    draft | generated | scheduled -> sent | failed
    failed -> sent | failed (a retry is a new dispatch)
    sent is terminal
"""

__all__ = [
    "PitchStatus",
    "PitchTemplate",
    "GeneratedPitch",
]


class PitchStatus(Enum):
    DRAFT = "draft"
    GENERATED = "generated"
    SENT = "sent"
    FAILED = "failed"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class PitchTemplate:
    """A pitch template. Placeholders are derived from raw_text on every access."""
    raw_text: str
    name: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def placeholders(self) -> list[str]:
        return extract_placeholders(self.raw_text)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class GeneratedPitch:
    """Result of filling a template against one data row."""
    source_row: dict[str, Any]
    filled_text: str
    subject: str = ""
    status: PitchStatus = PitchStatus.DRAFT
    user_id: str | None = None
    dataset_id: str | None = None
    row_index: int | None = None  # 元データ行の参照
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    sent_at: datetime | None = None
    error_message: str | None = None
    message_id: str | None = None

    def _check_mutable(self, target: PitchStatus) -> None:
        if self.status is PitchStatus.SENT:
            raise PitchStateError(
                f"pitch {self.id} already sent; cannot move to {target.value}"
            )

    def mark_sent(self, message_id: str | None = None, at: datetime | None = None) -> GeneratedPitch:
        self._check_mutable(PitchStatus.SENT)
        return replace(
            self,
            status=PitchStatus.SENT,
            sent_at=at or _utcnow(),
            message_id=message_id,
            error_message=None,
        )

    def mark_failed(self, error_message: str) -> GeneratedPitch:
        self._check_mutable(PitchStatus.FAILED)
        return replace(self, status=PitchStatus.FAILED, error_message=error_message)

    def to_record(self) -> dict[str, Any]:
        """Storage representation (generated_pitches row)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "dataset_id": self.dataset_id,
            "row_index": self.row_index,
            "recipient_data": self.source_row,
            "generated_subject": self.subject,
            "generated_content": self.filled_text,
            "status": self.status.value,
            "created_at": self.created_at,
            "email_sent_at": self.sent_at,
            "error_message": self.error_message,
            "sendgrid_message_id": self.message_id,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> GeneratedPitch:
        return cls(
            id=str(record["id"]),
            user_id=record.get("user_id"),
            dataset_id=str(record["dataset_id"]) if record.get("dataset_id") is not None else None,
            row_index=record.get("row_index"),
            source_row=dict(record.get("recipient_data") or {}),
            subject=record.get("generated_subject") or "",
            filled_text=record.get("generated_content") or "",
            status=PitchStatus(record.get("status", "draft")),
            created_at=record.get("created_at") or _utcnow(),
            sent_at=record.get("email_sent_at"),
            error_message=record.get("error_message"),
            message_id=record.get("sendgrid_message_id"),
        )
