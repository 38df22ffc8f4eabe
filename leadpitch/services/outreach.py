from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from ..config.loader import SenderConfig
from ..db.store import PitchStore, QuotaStore
from ..errors import PersistenceError, ProviderError, ValidationError
from ..logging.error_log import ErrorLogBuffer
from ..models.cell import Cell, is_empty
from ..models.dataset import DatasetRow
from ..models.dispatch import DispatchResult, DispatchSummary
from ..models.pitch import GeneratedPitch, PitchStatus, PitchTemplate
from ..providers.sendgrid import SendResult
from .dispatcher import (
    DEFAULT_BATCH_DELAY,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CALL_INTERVAL,
    BatchDispatcher,
    FixedIntervalThrottle,
    ProgressCallback,
    Sleep,
)
from .template import fill_template, format_value, render_html, require_valid_template

"""Outreach workflow: template + rows -> generated pitches -> email delivery.

generate_pitches():
- validates template placeholders against the rows' columns (ValidationError)
- fills the template per row and passes the text to the generator one call at
  a time, spaced by the generation throttle
- without a generator the filled template itself becomes the pitch

send_pitches():
- builds one delivery per pitch that has a recipient address and content
- re-reads the quota under a per-user lock and rejects the whole batch when it
  does not fit (QuotaExceededError, nothing is sent)
- sends in concurrent batches; every success increments the daily counter once
- records sent / failed on each pitch and appends failures to the error log
"""

__all__ = [
    "DEFAULT_SUBJECT",
    "TextGenerator",
    "EmailSender",
    "Delivery",
    "OutreachResult",
    "OutreachService",
]

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "A quick note for {{name}}"
TEST_SUBJECT = "Test Email Successful"
TEST_BODY = (
    "Your email configuration is working.\n\n"
    "This test message was sent through SendGrid to confirm that bulk pitch "
    "delivery is ready to use."
)


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


class EmailSender(Protocol):
    async def send(
        self,
        *,
        to: str,
        from_email: str,
        from_name: str,
        subject: str,
        html: str,
        text: str | None = None,
        reply_to: str | None = None,
    ) -> SendResult: ...


@dataclass(frozen=True)
class Delivery:
    pitch: GeneratedPitch
    to: str
    subject: str


@dataclass(frozen=True)
class OutreachResult:
    pitches: list[GeneratedPitch]
    summary: DispatchSummary
    skipped: int = 0
    error_messages: list[str] = field(default_factory=list)


def _row_data(row: DatasetRow | Mapping[str, Cell]) -> tuple[dict[str, Cell], int | None, str | None]:
    if isinstance(row, DatasetRow):
        return dict(row.row_data), row.row_index, row.dataset_id
    return dict(row), None, None


class OutreachService:
    def __init__(
        self,
        *,
        pitch_store: PitchStore,
        quota_store: QuotaStore,
        sender_config: SenderConfig,
        generator: TextGenerator | None = None,
        sender: EmailSender | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        generation_delay: float = DEFAULT_CALL_INTERVAL,
        error_log: ErrorLogBuffer | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.pitch_store = pitch_store
        self.quota_store = quota_store
        self.sender_config = sender_config
        self.generator = generator
        self.sender = sender
        self.dispatcher = BatchDispatcher(batch_size, batch_delay, sleep=sleep)
        self.throttle = FixedIntervalThrottle(generation_delay, sleep=sleep)
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self._user_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    # quota ----------------------------------------------------------------
    def can_send(self, user_id: str) -> tuple[bool, int, int]:
        """(can_send, remaining, daily_limit) for ``user_id`` today."""
        quota = self.quota_store.get_quota(user_id)
        return quota.can_send, quota.remaining, quota.daily_limit

    def _persist(self, pitch: GeneratedPitch, *, new: bool, operation: str, item: int) -> None:
        try:
            if new:
                self.pitch_store.save_pitch(pitch)
            else:
                self.pitch_store.update_pitch(pitch)
        except PersistenceError as e:
            logger.error(f"{operation.lower()}: failed to store pitch {pitch.id}: {e}")
            self.error_log.record(operation, item, pitch.id, "PERSISTENCE_ERROR", str(e))

    # generation -----------------------------------------------------------
    async def _generate_one(self, prompt: str) -> str:
        if self.generator is None:
            return prompt
        return await self.generator.generate(prompt)

    async def generate_pitches(
        self,
        template: PitchTemplate | str,
        rows: Sequence[DatasetRow | Mapping[str, Cell]],
        *,
        subject_template: str | None = None,
        user_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OutreachResult:
        """Generate one pitch per row.

        Raises:
            ValidationError: template references columns the rows do not have
        """
        raw = template.raw_text if isinstance(template, PitchTemplate) else template
        prepared = [_row_data(r) for r in rows]
        columns: list[str] = []
        for data, _, _ in prepared:
            columns.extend(c for c in data if c not in columns)
        require_valid_template(raw, columns)

        prompts = [fill_template(raw, data) for data, _, _ in prepared]
        start = time.perf_counter()
        results = await self.dispatcher.dispatch_sequential(
            prompts, self._generate_one, throttle=self.throttle, on_progress=on_progress
        )
        elapsed = time.perf_counter() - start

        pitches: list[GeneratedPitch] = []
        errors: list[str] = []
        for res, (data, row_index, dataset_id) in zip(results, prepared, strict=True):
            pitch = GeneratedPitch(
                source_row=data,
                filled_text=res.result if res.success else "",
                subject=fill_template(subject_template, data) if subject_template else "",
                status=PitchStatus.GENERATED if res.success else PitchStatus.FAILED,
                user_id=user_id,
                dataset_id=dataset_id,
                row_index=row_index if row_index is not None else res.index,
                error_message=None if res.success else res.error,
            )
            if not res.success:
                logger.warning(f"generate: row {pitch.row_index} failed: {res.error}")
                self.error_log.record("GENERATE", res.index, str(pitch.row_index), "PROVIDER_ERROR", res.error or "")
                errors.append(res.error or "")
            self._persist(pitch, new=True, operation="GENERATE", item=res.index)
            pitches.append(pitch)

        return OutreachResult(
            pitches=pitches,
            summary=DispatchSummary.from_results(results, elapsed),
            error_messages=errors,
        )

    # delivery -------------------------------------------------------------
    def build_deliveries(
        self,
        pitches: Sequence[GeneratedPitch],
        email_column: str,
        *,
        name_column: str | None = None,
        subject: str | None = None,
    ) -> tuple[list[Delivery], int]:
        """Pair pitches with recipients. Returns (deliveries, skipped_count)."""
        deliveries: list[Delivery] = []
        skipped = 0
        for pitch in pitches:
            to = format_value(pitch.source_row.get(email_column)).strip()
            if pitch.status is PitchStatus.SENT or not to or not pitch.filled_text.strip():
                skipped += 1
                continue
            name_value = pitch.source_row.get(name_column) if name_column else None
            name = to if is_empty(name_value) else format_value(name_value)
            context: dict[str, Any] = {"name": name, "email": to, **pitch.source_row}
            title = pitch.subject or fill_template(subject or DEFAULT_SUBJECT, context)
            deliveries.append(Delivery(pitch=pitch, to=to, subject=title))
        if skipped:
            logger.warning(f"send: skipped {skipped} pitches without recipient, content, or already sent")
        return deliveries, skipped

    async def _deliver(self, delivery: Delivery) -> SendResult:
        if self.sender is None:
            raise ProviderError("email sender is not configured")
        result = await self.sender.send(
            to=delivery.to,
            from_email=self.sender_config.from_email,
            from_name=self.sender_config.from_name,
            subject=delivery.subject,
            html=render_html(delivery.pitch.filled_text),
            text=delivery.pitch.filled_text,
            reply_to=self.sender_config.reply_to,
        )
        if not result.success:
            raise ProviderError(result.error or "Failed to send email")
        return result

    def _record_delivery(self, res: DispatchResult, user_id: str) -> GeneratedPitch:
        delivery: Delivery = res.item
        pitch = replace(delivery.pitch, subject=delivery.subject)
        if res.success:
            pitch = pitch.mark_sent(message_id=res.result.message_id)
            try:
                self.quota_store.increment_sent(user_id)
            except PersistenceError as e:
                logger.error(f"send: failed to count delivery to {delivery.to}: {e}")
                self.error_log.record("SEND", res.index, delivery.to, "PERSISTENCE_ERROR", str(e))
        else:
            pitch = pitch.mark_failed(res.error or "Failed to send email")
            logger.warning(f"send: delivery to {delivery.to} failed: {res.error}")
            self.error_log.record("SEND", res.index, delivery.to, "PROVIDER_ERROR", res.error or "")
        self._persist(pitch, new=False, operation="SEND", item=res.index)
        return pitch

    async def send_pitches(
        self,
        user_id: str,
        pitches: Sequence[GeneratedPitch],
        email_column: str,
        *,
        name_column: str | None = None,
        subject: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> OutreachResult:
        """Deliver ``pitches`` by email within the user's daily quota.

        Raises:
            ValidationError: no pitch has both a recipient address and content
            QuotaExceededError: more deliveries than the remaining allowance
        """
        deliveries, skipped = self.build_deliveries(
            pitches, email_column, name_column=name_column, subject=subject
        )
        if not deliveries:
            raise ValidationError("No valid emails to send")

        # 同一ユーザーの送信を直列化し、残数はロック内で読み直す
        async with self._lock_for(user_id):
            quota = self.quota_store.get_quota(user_id)
            recorded: dict[int, GeneratedPitch] = {}

            def record(res: DispatchResult) -> None:
                recorded[res.index] = self._record_delivery(res, user_id)

            start = time.perf_counter()
            results = await self.dispatcher.dispatch(
                deliveries, self._deliver, quota=quota, on_progress=on_progress, on_settled=record
            )
            elapsed = time.perf_counter() - start
            updated = [recorded[res.index] for res in results]

        return OutreachResult(
            pitches=updated,
            summary=DispatchSummary.from_results(results, elapsed),
            skipped=skipped,
            error_messages=[r.error or "" for r in results if not r.success],
        )

    async def send_test_email(self, to: str) -> SendResult:
        """Send a fixed test message to ``to`` through the configured sender."""
        if self.sender is None:
            return SendResult(success=False, error="email sender is not configured")
        return await self.sender.send(
            to=to,
            from_email=self.sender_config.from_email,
            from_name=self.sender_config.from_name,
            subject=TEST_SUBJECT,
            html=render_html(TEST_BODY),
            text=TEST_BODY,
            reply_to=self.sender_config.reply_to,
        )
