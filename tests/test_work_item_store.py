from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import sqlite
from sqlalchemy.schema import CreateTable

from devops_mirror.core.exceptions import BatchPersistenceError
from devops_mirror.integrations.azure_devops.mapper import NormalizedComment, map_work_item
from devops_mirror.models.work_item import WorkItem, WorkItemComment
from devops_mirror.services.work_items import WorkItemStore

SYNCED_AT = dt.datetime(2025, 1, 9, 8, 30, tzinfo=dt.timezone.utc)


def _comment(comment_id: str, work_item_id: int, text: str = "note") -> NormalizedComment:
    return NormalizedComment(
        id=comment_id,
        work_item_id=work_item_id,
        text=text,
        created_by="nathan.vale@example.com",
        created_date=dt.datetime(2025, 1, 8, 10, 0, tzinfo=dt.timezone.utc),
        modified_by=None,
        modified_date=None,
    )


def _count(session_factory, model) -> int:  # noqa: ANN001
    with session_factory() as db:
        return db.scalar(select(func.count()).select_from(model))


def test_upsert_same_payload_twice_is_idempotent(store, session_factory, work_item_payload) -> None:
    items = [map_work_item(work_item_payload(work_item_id)) for work_item_id in (1, 2, 3)]

    assert store.upsert_work_items(items, synced_at=SYNCED_AT) == 3
    first = {row.id: (row.title, row.raw_json) for row in store.query_by()}
    assert store.upsert_work_items(items, synced_at=SYNCED_AT) == 3
    second = {row.id: (row.title, row.raw_json) for row in store.query_by()}

    assert first == second
    assert _count(session_factory, WorkItem) == 3


def test_upsert_updates_existing_rows(store, work_item_payload) -> None:
    store.upsert_work_items([map_work_item(work_item_payload(10, state="New"))], synced_at=SYNCED_AT)
    store.upsert_work_items([map_work_item(work_item_payload(10, state="Closed"))], synced_at=SYNCED_AT)

    row = store.get_work_item(10)
    assert row is not None
    assert row.state == "Closed"


def test_failed_batch_keeps_earlier_batches_and_skips_later_ones(session_factory, work_item_payload, monkeypatch) -> None:
    store = WorkItemStore(session_factory, work_item_batch_size=2)
    items = [map_work_item(work_item_payload(work_item_id)) for work_item_id in (1, 2, 3, 4, 5)]
    original = store._apply_work_item_batch
    attempted: list[list[int]] = []

    def flaky_batch(db, batch, synced_at) -> None:  # noqa: ANN001
        attempted.append([item.id for item in batch])
        original(db, batch, synced_at)
        if len(attempted) == 2:
            raise RuntimeError("disk full")

    monkeypatch.setattr(store, "_apply_work_item_batch", flaky_batch)

    with pytest.raises(BatchPersistenceError) as excinfo:
        store.upsert_work_items(items, synced_at=SYNCED_AT)

    assert excinfo.value.batch_index == 1
    assert excinfo.value.total_batches == 3
    assert "batch 2/3" in excinfo.value.message
    assert attempted == [[1, 2], [3, 4]]
    assert sorted(row.id for row in store.query_by()) == [1, 2]


def test_watermark_tracks_latest_sync(store, work_item_payload) -> None:
    assert store.get_watermark() is None

    store.upsert_work_items([map_work_item(work_item_payload(1))], synced_at=SYNCED_AT)
    later = SYNCED_AT + dt.timedelta(minutes=5)
    store.upsert_work_items([map_work_item(work_item_payload(2))], synced_at=later)

    watermark = store.get_watermark()
    assert watermark == later
    assert watermark.tzinfo is not None


def test_query_by_filters_and_orders(store, work_item_payload) -> None:
    items = [
        map_work_item(work_item_payload(1, state="Active", changed="2025-01-01T00:00:00Z")),
        map_work_item(work_item_payload(2, state="Active", changed="2025-01-03T00:00:00Z")),
        map_work_item(work_item_payload(3, state="Closed", work_item_type="Bug")),
        map_work_item(work_item_payload(4, state="Active", assigned_to={"uniqueName": "other@example.com"})),
    ]
    store.upsert_work_items(items, synced_at=SYNCED_AT)

    active = store.query_by(state="Active", assigned_to="nathan.vale@example.com")
    assert [row.id for row in active] == [2, 1]
    assert [row.id for row in store.query_by(type="Bug")] == [3]
    assert [row.id for row in store.query_by(state=["Active", "Closed"], limit=2)] == [3, 4]


def test_comments_upsert_and_cascade_delete(store, session_factory, work_item_payload) -> None:
    store.upsert_work_items([map_work_item(work_item_payload(1))], synced_at=SYNCED_AT)
    comments = [_comment("c1", 1), _comment("c2", 1)]

    assert store.upsert_comments(comments) == 2
    assert store.upsert_comments([_comment("c1", 1, text="edited")]) == 1
    stored = {comment.id: comment.text for comment in store.get_comments(1)}
    assert stored == {"c1": "edited", "c2": "note"}

    with session_factory() as db, db.begin():
        db.delete(db.get(WorkItem, 1))

    assert store.get_comments(1) == []
    assert _count(session_factory, WorkItemComment) == 0


def test_comment_for_unknown_work_item_fails_batch(store) -> None:
    with pytest.raises(BatchPersistenceError) as excinfo:
        store.upsert_comments([_comment("orphan", 404)])
    assert excinfo.value.entity == "work_item_comments"


def test_empty_upserts_are_noops(store) -> None:
    assert store.upsert_work_items([]) == 0
    assert store.upsert_comments([]) == 0
    assert store.get_watermark() is None


def test_constraint_names_match_the_migration() -> None:
    comments = WorkItemComment.__table__
    work_items = WorkItem.__table__

    ddl = str(CreateTable(comments).compile(dialect=sqlite.dialect()))
    assert "CONSTRAINT fk_work_item_comments_work_item_id_work_items FOREIGN KEY" in ddl
    assert {index.name for index in work_items.indexes} >= {"ix_work_items_state", "ix_work_items_last_synced_at"}
