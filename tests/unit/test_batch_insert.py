from __future__ import annotations

import pytest

from leadpitch.db.batch_insert import BatchInsertError, InsertResult, batch_insert
from leadpitch.errors import PersistenceError


class DummyCursor:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.pages: list[list] = []


# execute_values is patched inside the module so no database is needed
@pytest.fixture(autouse=True)
def patch_execute_values(monkeypatch):
    import leadpitch.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, page_size=100):
        cursor.queries.append(sql)
        for start in range(0, len(rows), page_size):
            cursor.pages.append(rows[start:start + page_size])

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


def test_batch_insert_basic():
    cur = DummyCursor()
    res = batch_insert(cur, table="dataset_rows", columns=["dataset_id", "row_index"], rows=[["d", 0], ["d", 1]])
    assert isinstance(res, InsertResult)
    assert res.inserted_rows == 2
    assert cur.queries == ['INSERT INTO dataset_rows ("dataset_id","row_index") VALUES %s']
    assert cur.pages == [[["d", 0], ["d", 1]]]


def test_batch_insert_pages():
    cur = DummyCursor()
    res = batch_insert(cur, table="t", columns=["id"], rows=([i] for i in range(5)), page_size=2)
    assert res.inserted_rows == 5
    assert [len(p) for p in cur.pages] == [2, 2, 1]


def test_batch_insert_empty_rows_skips_database():
    cur = DummyCursor()
    captured = []
    res = batch_insert(cur, table="t", columns=["id"], rows=[], metrics_callback=captured.append)
    assert res.inserted_rows == 0
    assert cur.queries == []
    assert captured == []


def test_batch_insert_wraps_driver_errors(monkeypatch):
    import leadpitch.db.batch_insert as bi

    def failing(*args, **kwargs):
        raise RuntimeError("relation does not exist")

    monkeypatch.setattr(bi, "execute_values", failing)
    captured = []
    with pytest.raises(BatchInsertError) as e:
        batch_insert(DummyCursor(), table="t", columns=["c"], rows=[[1]], metrics_callback=captured.append)
    assert isinstance(e.value, PersistenceError)
    assert len(captured) == 1


def test_batch_insert_metrics():
    captured = []
    batch_insert(
        DummyCursor(),
        table="dataset_rows",
        columns=["dataset_id", "row_index", "row_data"],
        rows=[["d", 0, "{}"]],
        metrics_callback=captured.append,
    )
    assert len(captured) == 1
    assert captured[0].batch_size == 1
    assert captured[0].elapsed_seconds >= 0
