from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime
from functools import partial
from typing import Any, Protocol

from psycopg2.extras import Json, RealDictCursor

from ..errors import PersistenceError
from ..models.dataset import Dataset, DatasetRow
from ..models.pitch import GeneratedPitch, PitchStatus, PitchTemplate
from ..models.quota import SendQuota
from .batch_insert import DEFAULT_PAGE_SIZE, batch_insert

"""Storage ports and adapters.

Ports (typing.Protocol) describe what the import / outreach services need:
datasets + dataset rows, generated pitches, pitch templates and the per-user
send quota. Two adapters implement all of them:

- PostgresStore: psycopg2 connection, JSONB row payloads, execute_values for
  row pages, atomic UPDATE ... RETURNING for the quota counter.
- InMemoryStore: dict-backed, used in mock mode (DISABLE_DB_CONNECT=1) and tests.
"""

__all__ = [
    "SCHEMA_SQL",
    "DatasetStore",
    "PitchStore",
    "TemplateStore",
    "QuotaStore",
    "InMemoryStore",
    "PostgresStore",
]

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 100


class DatasetStore(Protocol):
    def create_dataset(self, dataset: Dataset) -> Dataset: ...
    def insert_rows(self, rows: Sequence[DatasetRow], page_size: int = DEFAULT_PAGE_SIZE) -> int: ...
    def get_dataset(self, dataset_id: str) -> Dataset | None: ...
    def list_datasets(self, user_id: str | None = None) -> list[Dataset]: ...
    def list_rows(self, dataset_id: str) -> list[DatasetRow]: ...
    def update_dataset(self, dataset: Dataset) -> Dataset: ...
    def delete_dataset(self, dataset_id: str) -> None: ...


class PitchStore(Protocol):
    def save_pitch(self, pitch: GeneratedPitch) -> GeneratedPitch: ...
    def update_pitch(self, pitch: GeneratedPitch) -> GeneratedPitch: ...
    def list_pitches(self, user_id: str | None = None, status: PitchStatus | None = None) -> list[GeneratedPitch]: ...
    def delete_pitch(self, pitch_id: str) -> None: ...


class TemplateStore(Protocol):
    def save_template(self, template: PitchTemplate, user_id: str | None = None) -> PitchTemplate: ...
    def list_templates(self, user_id: str | None = None) -> list[PitchTemplate]: ...
    def delete_template(self, template_id: str) -> None: ...


class QuotaStore(Protocol):
    def get_quota(self, user_id: str) -> SendQuota: ...
    def increment_sent(self, user_id: str) -> int: ...
    def reset_daily(self, user_id: str) -> None: ...


def _json_default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


_dumps = partial(json.dumps, default=_json_default, ensure_ascii=False)


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------

class InMemoryStore:
    """Dict-backed implementation of every storage port.

    The quota counter is guarded by a threading.Lock, so increments are atomic
    even when the store is shared across event loops or worker threads.
    """

    def __init__(
        self,
        *,
        default_daily_limit: int = DEFAULT_DAILY_LIMIT,
        today: Callable[[], date] = lambda: datetime.now(UTC).date(),
    ) -> None:
        self.default_daily_limit = default_daily_limit
        self._today = today
        self._lock = threading.Lock()
        self.datasets: dict[str, Dataset] = {}
        self.rows: dict[str, list[DatasetRow]] = {}
        self.pitches: dict[str, GeneratedPitch] = {}
        self.templates: dict[str, tuple[PitchTemplate, str | None]] = {}
        self._quotas: dict[str, dict[str, Any]] = {}

    # datasets -------------------------------------------------------------
    def create_dataset(self, dataset: Dataset) -> Dataset:
        self.datasets[dataset.id] = dataset
        self.rows.setdefault(dataset.id, [])
        return dataset

    def insert_rows(self, rows: Sequence[DatasetRow], page_size: int = DEFAULT_PAGE_SIZE) -> int:
        for row in rows:
            if row.dataset_id not in self.datasets:
                raise PersistenceError(f"dataset not found: {row.dataset_id}")
            self.rows[row.dataset_id].append(row)
        return len(rows)

    def get_dataset(self, dataset_id: str) -> Dataset | None:
        return self.datasets.get(dataset_id)

    def list_datasets(self, user_id: str | None = None) -> list[Dataset]:
        found = [d for d in self.datasets.values() if user_id is None or d.user_id == user_id]
        return sorted(found, key=lambda d: d.created_at, reverse=True)

    def list_rows(self, dataset_id: str) -> list[DatasetRow]:
        return sorted(self.rows.get(dataset_id, []), key=lambda r: r.row_index)

    def update_dataset(self, dataset: Dataset) -> Dataset:
        if dataset.id not in self.datasets:
            raise PersistenceError(f"dataset not found: {dataset.id}")
        self.datasets[dataset.id] = dataset
        return dataset

    def delete_dataset(self, dataset_id: str) -> None:
        self.datasets.pop(dataset_id, None)
        self.rows.pop(dataset_id, None)

    # pitches --------------------------------------------------------------
    def save_pitch(self, pitch: GeneratedPitch) -> GeneratedPitch:
        self.pitches[pitch.id] = pitch
        return pitch

    def update_pitch(self, pitch: GeneratedPitch) -> GeneratedPitch:
        if pitch.id not in self.pitches:
            raise PersistenceError(f"pitch not found: {pitch.id}")
        self.pitches[pitch.id] = pitch
        return pitch

    def list_pitches(self, user_id: str | None = None, status: PitchStatus | None = None) -> list[GeneratedPitch]:
        found = [
            p for p in self.pitches.values()
            if (user_id is None or p.user_id == user_id) and (status is None or p.status is status)
        ]
        return sorted(found, key=lambda p: p.created_at, reverse=True)

    def delete_pitch(self, pitch_id: str) -> None:
        self.pitches.pop(pitch_id, None)

    # templates ------------------------------------------------------------
    def save_template(self, template: PitchTemplate, user_id: str | None = None) -> PitchTemplate:
        self.templates[template.id] = (template, user_id)
        return template

    def list_templates(self, user_id: str | None = None) -> list[PitchTemplate]:
        return [t for t, owner in self.templates.values() if user_id is None or owner == user_id]

    def delete_template(self, template_id: str) -> None:
        self.templates.pop(template_id, None)

    # quota ----------------------------------------------------------------
    def _quota_entry(self, user_id: str) -> dict[str, Any]:
        entry = self._quotas.get(user_id)
        today = self._today()
        if entry is None:
            entry = {"daily_limit": self.default_daily_limit, "sent_today": 0, "day": today}
            self._quotas[user_id] = entry
        elif entry["day"] != today:
            entry["sent_today"] = 0
            entry["day"] = today
        return entry

    def set_daily_limit(self, user_id: str, daily_limit: int) -> None:
        with self._lock:
            self._quota_entry(user_id)["daily_limit"] = daily_limit

    def get_quota(self, user_id: str) -> SendQuota:
        with self._lock:
            entry = self._quota_entry(user_id)
            return SendQuota(daily_limit=entry["daily_limit"], sent_today=entry["sent_today"])

    def increment_sent(self, user_id: str) -> int:
        with self._lock:
            entry = self._quota_entry(user_id)
            entry["sent_today"] += 1
            return entry["sent_today"]

    def reset_daily(self, user_id: str) -> None:
        with self._lock:
            self._quota_entry(user_id)["sent_today"] = 0


# ---------------------------------------------------------------------------
# PostgreSQL adapter
# ---------------------------------------------------------------------------

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS datasets (
    id uuid PRIMARY KEY,
    user_id text,
    name text NOT NULL,
    original_filename text,
    total_rows integer NOT NULL DEFAULT 0,
    column_mappings jsonb NOT NULL DEFAULT '{}'::jsonb,
    created_at timestamptz NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS dataset_rows (
    id bigserial PRIMARY KEY,
    dataset_id uuid NOT NULL REFERENCES datasets(id) ON DELETE CASCADE,
    row_index integer NOT NULL,
    row_data jsonb NOT NULL
);
CREATE INDEX IF NOT EXISTS dataset_rows_dataset_idx ON dataset_rows (dataset_id, row_index);
CREATE TABLE IF NOT EXISTS pitch_templates (
    id uuid PRIMARY KEY,
    user_id text,
    name text NOT NULL DEFAULT '',
    template_content text NOT NULL,
    created_at timestamptz NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS generated_pitches (
    id uuid PRIMARY KEY,
    user_id text,
    dataset_id uuid,
    row_index integer,
    recipient_data jsonb NOT NULL DEFAULT '{}'::jsonb,
    generated_subject text,
    generated_content text,
    status text NOT NULL,
    created_at timestamptz NOT NULL DEFAULT now(),
    email_sent_at timestamptz,
    error_message text,
    sendgrid_message_id text
);
CREATE TABLE IF NOT EXISTS email_settings (
    user_id text PRIMARY KEY,
    daily_send_limit integer NOT NULL DEFAULT 100,
    emails_sent_today integer NOT NULL DEFAULT 0 CHECK (emails_sent_today >= 0),
    last_reset_date date NOT NULL DEFAULT CURRENT_DATE
);
"""

_PITCH_COLUMNS = (
    "id", "user_id", "dataset_id", "row_index", "recipient_data", "generated_subject",
    "generated_content", "status", "created_at", "email_sent_at", "error_message",
    "sendgrid_message_id",
)


def _dataset_from_row(row: dict[str, Any]) -> Dataset:
    return Dataset(
        id=str(row["id"]),
        user_id=row.get("user_id"),
        name=row["name"],
        original_filename=row.get("original_filename"),
        total_rows=row.get("total_rows") or 0,
        column_mappings=dict(row.get("column_mappings") or {}),
        created_at=row["created_at"],
    )


class PostgresStore:
    """psycopg2-backed implementation of every storage port.

    Each public method runs in its own transaction: commit on success,
    rollback + PersistenceError on failure. insert_rows commits once after all
    pages; a failing page leaves earlier statements rolled back together with it.
    """

    def __init__(self, conn: Any, *, default_daily_limit: int = DEFAULT_DAILY_LIMIT) -> None:
        self._conn = conn
        self.default_daily_limit = default_daily_limit

    def _run(self, label: str, fn: Callable[[Any], Any]) -> Any:
        try:
            with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                result = fn(cur)
            self._conn.commit()
            return result
        except PersistenceError:
            self._conn.rollback()
            raise
        except Exception as e:
            self._conn.rollback()
            raise PersistenceError(f"{label} failed: {e}") from e

    def ensure_schema(self) -> None:
        self._run("ensure_schema", lambda cur: cur.execute(SCHEMA_SQL))

    # datasets -------------------------------------------------------------
    def create_dataset(self, dataset: Dataset) -> Dataset:
        def _insert(cur: Any) -> Dataset:
            cur.execute(
                "INSERT INTO datasets (id, user_id, name, original_filename, total_rows, column_mappings, created_at)"
                " VALUES (%s, %s, %s, %s, %s, %s, %s)",
                (
                    dataset.id, dataset.user_id, dataset.name, dataset.original_filename,
                    dataset.total_rows, Json(dataset.column_mappings, dumps=_dumps), dataset.created_at,
                ),
            )
            return dataset
        return self._run("create_dataset", _insert)

    def insert_rows(self, rows: Sequence[DatasetRow], page_size: int = DEFAULT_PAGE_SIZE) -> int:
        values = [(r.dataset_id, r.row_index, Json(r.row_data, dumps=_dumps)) for r in rows]

        def _insert(cur: Any) -> int:
            res = batch_insert(
                cur, "dataset_rows", ["dataset_id", "row_index", "row_data"], values,
                page_size=page_size,
                metrics_callback=lambda m: logger.debug(
                    f"dataset_rows insert rows={m.batch_size} elapsed={m.elapsed_seconds:.3f}s"
                ),
            )
            return res.inserted_rows
        return self._run("insert_rows", _insert)

    def get_dataset(self, dataset_id: str) -> Dataset | None:
        def _select(cur: Any) -> Dataset | None:
            cur.execute("SELECT * FROM datasets WHERE id = %s", (dataset_id,))
            row = cur.fetchone()
            return _dataset_from_row(row) if row else None
        return self._run("get_dataset", _select)

    def list_datasets(self, user_id: str | None = None) -> list[Dataset]:
        def _select(cur: Any) -> list[Dataset]:
            if user_id is None:
                cur.execute("SELECT * FROM datasets ORDER BY created_at DESC")
            else:
                cur.execute("SELECT * FROM datasets WHERE user_id = %s ORDER BY created_at DESC", (user_id,))
            return [_dataset_from_row(r) for r in cur.fetchall()]
        return self._run("list_datasets", _select)

    def list_rows(self, dataset_id: str) -> list[DatasetRow]:
        def _select(cur: Any) -> list[DatasetRow]:
            cur.execute(
                "SELECT dataset_id, row_index, row_data FROM dataset_rows"
                " WHERE dataset_id = %s ORDER BY row_index",
                (dataset_id,),
            )
            return [
                DatasetRow(dataset_id=str(r["dataset_id"]), row_index=r["row_index"], row_data=dict(r["row_data"]))
                for r in cur.fetchall()
            ]
        return self._run("list_rows", _select)

    def update_dataset(self, dataset: Dataset) -> Dataset:
        def _update(cur: Any) -> Dataset:
            cur.execute(
                "UPDATE datasets SET name = %s, total_rows = %s, column_mappings = %s WHERE id = %s",
                (dataset.name, dataset.total_rows, Json(dataset.column_mappings, dumps=_dumps), dataset.id),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"dataset not found: {dataset.id}")
            return dataset
        return self._run("update_dataset", _update)

    def delete_dataset(self, dataset_id: str) -> None:
        self._run("delete_dataset", lambda cur: cur.execute("DELETE FROM datasets WHERE id = %s", (dataset_id,)))

    # pitches --------------------------------------------------------------
    def _pitch_values(self, pitch: GeneratedPitch) -> tuple[Any, ...]:
        record = pitch.to_record()
        record["recipient_data"] = Json(record["recipient_data"], dumps=_dumps)
        return tuple(record[c] for c in _PITCH_COLUMNS)

    def save_pitch(self, pitch: GeneratedPitch) -> GeneratedPitch:
        cols = ", ".join(_PITCH_COLUMNS)
        marks = ", ".join(["%s"] * len(_PITCH_COLUMNS))
        self._run(
            "save_pitch",
            lambda cur: cur.execute(
                f"INSERT INTO generated_pitches ({cols}) VALUES ({marks})", self._pitch_values(pitch)
            ),
        )
        return pitch

    def update_pitch(self, pitch: GeneratedPitch) -> GeneratedPitch:
        def _update(cur: Any) -> GeneratedPitch:
            cur.execute(
                "UPDATE generated_pitches SET status = %s, generated_subject = %s, generated_content = %s,"
                " email_sent_at = %s, error_message = %s, sendgrid_message_id = %s WHERE id = %s",
                (
                    pitch.status.value, pitch.subject, pitch.filled_text, pitch.sent_at,
                    pitch.error_message, pitch.message_id, pitch.id,
                ),
            )
            if cur.rowcount == 0:
                raise PersistenceError(f"pitch not found: {pitch.id}")
            return pitch
        return self._run("update_pitch", _update)

    def list_pitches(self, user_id: str | None = None, status: PitchStatus | None = None) -> list[GeneratedPitch]:
        def _select(cur: Any) -> list[GeneratedPitch]:
            clauses: list[str] = []
            params: list[Any] = []
            if user_id is not None:
                clauses.append("user_id = %s")
                params.append(user_id)
            if status is not None:
                clauses.append("status = %s")
                params.append(status.value)
            where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
            cur.execute(f"SELECT * FROM generated_pitches{where} ORDER BY created_at DESC", tuple(params))
            return [GeneratedPitch.from_record(dict(r)) for r in cur.fetchall()]
        return self._run("list_pitches", _select)

    def delete_pitch(self, pitch_id: str) -> None:
        self._run("delete_pitch", lambda cur: cur.execute("DELETE FROM generated_pitches WHERE id = %s", (pitch_id,)))

    # templates ------------------------------------------------------------
    def save_template(self, template: PitchTemplate, user_id: str | None = None) -> PitchTemplate:
        self._run(
            "save_template",
            lambda cur: cur.execute(
                "INSERT INTO pitch_templates (id, user_id, name, template_content) VALUES (%s, %s, %s, %s)"
                " ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, template_content = EXCLUDED.template_content",
                (template.id, user_id, template.name, template.raw_text),
            ),
        )
        return template

    def list_templates(self, user_id: str | None = None) -> list[PitchTemplate]:
        def _select(cur: Any) -> list[PitchTemplate]:
            if user_id is None:
                cur.execute("SELECT * FROM pitch_templates ORDER BY created_at DESC")
            else:
                cur.execute("SELECT * FROM pitch_templates WHERE user_id = %s ORDER BY created_at DESC", (user_id,))
            return [
                PitchTemplate(id=str(r["id"]), name=r["name"], raw_text=r["template_content"])
                for r in cur.fetchall()
            ]
        return self._run("list_templates", _select)

    def delete_template(self, template_id: str) -> None:
        self._run("delete_template", lambda cur: cur.execute("DELETE FROM pitch_templates WHERE id = %s", (template_id,)))

    # quota ----------------------------------------------------------------
    def _ensure_quota_row(self, cur: Any, user_id: str) -> None:
        cur.execute(
            "INSERT INTO email_settings (user_id, daily_send_limit) VALUES (%s, %s) ON CONFLICT (user_id) DO NOTHING",
            (user_id, self.default_daily_limit),
        )
        # 日付が変わっていればカウンタをリセット
        cur.execute(
            "UPDATE email_settings SET emails_sent_today = 0, last_reset_date = CURRENT_DATE"
            " WHERE user_id = %s AND last_reset_date < CURRENT_DATE",
            (user_id,),
        )

    def get_quota(self, user_id: str) -> SendQuota:
        def _select(cur: Any) -> SendQuota:
            self._ensure_quota_row(cur, user_id)
            cur.execute(
                "SELECT daily_send_limit, emails_sent_today FROM email_settings WHERE user_id = %s",
                (user_id,),
            )
            row = cur.fetchone()
            return SendQuota(daily_limit=row["daily_send_limit"], sent_today=row["emails_sent_today"])
        return self._run("get_quota", _select)

    def increment_sent(self, user_id: str) -> int:
        def _increment(cur: Any) -> int:
            self._ensure_quota_row(cur, user_id)
            # 単一 UPDATE で原子的に加算 (read-modify-write しない)
            cur.execute(
                "UPDATE email_settings SET emails_sent_today = emails_sent_today + 1"
                " WHERE user_id = %s RETURNING emails_sent_today",
                (user_id,),
            )
            return cur.fetchone()["emails_sent_today"]
        return self._run("increment_sent", _increment)

    def reset_daily(self, user_id: str) -> None:
        self._run(
            "reset_daily",
            lambda cur: cur.execute(
                "UPDATE email_settings SET emails_sent_today = 0, last_reset_date = CURRENT_DATE WHERE user_id = %s",
                (user_id,),
            ),
        )

    def set_daily_limit(self, user_id: str, daily_limit: int) -> None:
        def _update(cur: Any) -> None:
            self._ensure_quota_row(cur, user_id)
            cur.execute(
                "UPDATE email_settings SET daily_send_limit = %s WHERE user_id = %s", (daily_limit, user_id)
            )
        self._run("set_daily_limit", _update)
