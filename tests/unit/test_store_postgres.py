from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from leadpitch.db.store import SCHEMA_SQL, PostgresStore
from leadpitch.errors import PersistenceError
from leadpitch.models.dataset import Dataset, DatasetRow
from leadpitch.models.pitch import GeneratedPitch, PitchStatus


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.rowcount = 1

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc: Any) -> None:
        pass

    def execute(self, sql: str, params: Any = None) -> None:
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise RuntimeError("server closed the connection")
        self.conn.executed.append((sql, params))
        self.rowcount = self.conn.rowcount

    def fetchone(self) -> Any:
        return self.conn.results.pop(0)

    def fetchall(self) -> Any:
        return self.conn.results.pop(0)


class FakeConnection:
    def __init__(self) -> None:
        self.executed: list[tuple[str, Any]] = []
        self.results: list[Any] = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on: str | None = None
        self.rowcount = 1

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


@pytest.fixture()
def pages(monkeypatch) -> list[tuple[str, list, int]]:
    import leadpitch.db.batch_insert as bi

    calls: list[tuple[str, list, int]] = []

    def fake_execute_values(cursor, sql, rows, page_size=100):
        for start in range(0, len(rows), page_size):
            calls.append((sql, rows[start:start + page_size], page_size))

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return calls


def test_ensure_schema_creates_tables():
    conn = FakeConnection()
    PostgresStore(conn).ensure_schema()
    assert conn.executed[0][0] == SCHEMA_SQL
    assert conn.commits == 1
    for table in ("datasets", "dataset_rows", "pitch_templates", "generated_pitches", "email_settings"):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in SCHEMA_SQL


def test_insert_rows_pages_of_hundred(pages):
    conn = FakeConnection()
    store = PostgresStore(conn)
    rows = [DatasetRow("ds-1", i, {"Name": f"n{i}"}) for i in range(250)]

    assert store.insert_rows(rows) == 250
    assert [len(batch) for _, batch, _ in pages] == [100, 100, 50]
    assert 'INSERT INTO dataset_rows ("dataset_id","row_index","row_data") VALUES %s' == pages[0][0]
    assert conn.commits == 1


def test_insert_rows_failure_rolls_back_and_wraps(monkeypatch):
    import leadpitch.db.batch_insert as bi

    def boom(*args, **kwargs):
        raise RuntimeError("duplicate key")

    monkeypatch.setattr(bi, "execute_values", boom)
    conn = FakeConnection()
    with pytest.raises(PersistenceError, match="duplicate key"):
        PostgresStore(conn).insert_rows([DatasetRow("ds", 0, {})])
    assert conn.rollbacks == 1 and conn.commits == 0


def test_create_and_get_dataset():
    conn = FakeConnection()
    store = PostgresStore(conn)
    ds = Dataset(name="Leads", column_mappings={"Name": {"type": "string", "original_name": "Name"}})
    store.create_dataset(ds)
    sql, params = conn.executed[0]
    assert sql.startswith("INSERT INTO datasets")
    assert params[0] == ds.id

    conn.results.append(
        {
            "id": ds.id,
            "user_id": None,
            "name": "Leads",
            "original_filename": "leads.csv",
            "total_rows": 4,
            "column_mappings": ds.column_mappings,
            "created_at": ds.created_at,
        }
    )
    loaded = store.get_dataset(ds.id)
    assert loaded.total_rows == 4 and loaded.columns == ["Name"]


def test_update_missing_dataset_raises():
    conn = FakeConnection()
    conn.rowcount = 0
    with pytest.raises(PersistenceError, match="not found"):
        PostgresStore(conn).update_dataset(Dataset(name="x"))
    assert conn.rollbacks == 1


def test_increment_is_single_atomic_update():
    conn = FakeConnection()
    conn.results.append({"emails_sent_today": 8})
    assert PostgresStore(conn).increment_sent("u1") == 8
    statements = [sql for sql, _ in conn.executed]
    assert any("emails_sent_today = emails_sent_today + 1" in s and "RETURNING" in s for s in statements)
    assert not any(s.lstrip().startswith("SELECT") for s in statements)


def test_get_quota_creates_default_row():
    conn = FakeConnection()
    conn.results.append({"daily_send_limit": 100, "emails_sent_today": 30})
    quota = PostgresStore(conn, default_daily_limit=100).get_quota("u1")
    assert quota.remaining == 70
    assert "ON CONFLICT (user_id) DO NOTHING" in conn.executed[0][0]
    assert conn.executed[0][1] == ("u1", 100)
    assert "last_reset_date < CURRENT_DATE" in conn.executed[1][0]


def test_list_pitches_filters_and_maps_records():
    conn = FakeConnection()
    sent_at = datetime(2024, 2, 1, tzinfo=UTC)
    pitch = GeneratedPitch(source_row={"Email": "a@x.com"}, filled_text="Hi", user_id="u").mark_sent("m", at=sent_at)
    conn.results.append([pitch.to_record()])

    found = PostgresStore(conn).list_pitches("u", PitchStatus.SENT)
    sql, params = conn.executed[0]
    assert "WHERE user_id = %s AND status = %s" in sql
    assert params == ("u", "sent")
    assert found == [pitch]


def test_errors_are_wrapped_as_persistence_error():
    conn = FakeConnection()
    conn.fail_on = "DELETE FROM generated_pitches"
    with pytest.raises(PersistenceError, match="delete_pitch failed"):
        PostgresStore(conn).delete_pitch("p1")
    assert conn.rollbacks == 1
