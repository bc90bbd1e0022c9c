"""Local work item store: batched transactional upserts and read helpers."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from collections.abc import Iterator, Sequence
from typing import TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from devops_mirror.core.exceptions import BatchPersistenceError
from devops_mirror.db.base import Base
from devops_mirror.integrations.azure_devops.mapper import NormalizedComment, NormalizedWorkItem
from devops_mirror.models.work_item import WorkItem, WorkItemComment

logger = logging.getLogger(__name__)

WORK_ITEM_BATCH_SIZE = 100
COMMENT_BATCH_SIZE = 50

T = TypeVar("T")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime | None) -> dt.datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite drops tzinfo; everything is written in UTC.
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _chunks(items: Sequence[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _as_list(value: str | Sequence[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [item for item in value if item]


class WorkItemStore:
    """Single-writer store, safe to call from worker threads. Each batch commits in
    its own transaction; a failed batch rolls back and aborts the remaining ones."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        *,
        work_item_batch_size: int = WORK_ITEM_BATCH_SIZE,
        comment_batch_size: int = COMMENT_BATCH_SIZE,
    ) -> None:
        if session_factory is None:
            from devops_mirror.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self.work_item_batch_size = max(1, work_item_batch_size)
        self.comment_batch_size = max(1, comment_batch_size)
        self._write_lock = threading.Lock()

    def init_schema(self) -> None:
        Base.metadata.create_all(bind=self._session_factory.kw["bind"])

    def upsert_work_items(self, items: Sequence[NormalizedWorkItem], *, synced_at: dt.datetime | None = None) -> int:
        now = synced_at or _utcnow()
        batches = list(_chunks(items, self.work_item_batch_size))
        persisted = 0
        for index, batch in enumerate(batches):
            try:
                with self._write_lock, self._session_factory() as db, db.begin():
                    self._apply_work_item_batch(db, batch, now)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Work item batch %s/%s (%s rows) failed; remaining batches skipped: %s",
                    index + 1,
                    len(batches),
                    len(batch),
                    exc,
                )
                raise BatchPersistenceError(
                    entity="work_items",
                    batch_index=index,
                    batch_size=len(batch),
                    total_batches=len(batches),
                    cause=exc,
                ) from exc
            persisted += len(batch)
        return persisted

    def _apply_work_item_batch(self, db: Session, batch: list[NormalizedWorkItem], synced_at: dt.datetime) -> None:
        ids = [item.id for item in batch]
        existing = {row.id: row for row in db.scalars(select(WorkItem).where(WorkItem.id.in_(ids)))}
        for item in batch:
            values = item.to_row()
            values["last_synced_at"] = synced_at
            row = existing.get(item.id)
            if row is None:
                row = WorkItem(**values)
                db.add(row)
                existing[item.id] = row
                continue
            for key, value in values.items():
                setattr(row, key, value)

    def upsert_comments(self, comments: Sequence[NormalizedComment]) -> int:
        batches = list(_chunks(comments, self.comment_batch_size))
        persisted = 0
        for index, batch in enumerate(batches):
            try:
                with self._write_lock, self._session_factory() as db, db.begin():
                    self._apply_comment_batch(db, batch)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Comment batch %s/%s (%s rows) failed; remaining batches skipped: %s",
                    index + 1,
                    len(batches),
                    len(batch),
                    exc,
                )
                raise BatchPersistenceError(
                    entity="work_item_comments",
                    batch_index=index,
                    batch_size=len(batch),
                    total_batches=len(batches),
                    cause=exc,
                ) from exc
            persisted += len(batch)
        return persisted

    def _apply_comment_batch(self, db: Session, batch: list[NormalizedComment]) -> None:
        ids = [comment.id for comment in batch]
        existing = {row.id: row for row in db.scalars(select(WorkItemComment).where(WorkItemComment.id.in_(ids)))}
        for comment in batch:
            values = comment.to_row()
            row = existing.get(comment.id)
            if row is None:
                row = WorkItemComment(**values)
                db.add(row)
                existing[comment.id] = row
                continue
            for key, value in values.items():
                setattr(row, key, value)

    def query_by(
        self,
        *,
        state: str | Sequence[str] | None = None,
        type: str | Sequence[str] | None = None,  # noqa: A002
        assigned_to: str | Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[WorkItem]:
        stmt = select(WorkItem)
        states = _as_list(state)
        types = _as_list(type)
        people = _as_list(assigned_to)
        if states:
            stmt = stmt.where(WorkItem.state.in_(states))
        if types:
            stmt = stmt.where(WorkItem.type.in_(types))
        if people:
            stmt = stmt.where(WorkItem.assigned_to.in_(people))
        stmt = stmt.order_by(WorkItem.last_updated_at.desc(), WorkItem.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def get_work_item(self, work_item_id: int) -> WorkItem | None:
        with self._session_factory() as db:
            return db.get(WorkItem, work_item_id)

    def get_comments(self, work_item_id: int) -> list[WorkItemComment]:
        stmt = (
            select(WorkItemComment)
            .where(WorkItemComment.work_item_id == work_item_id)
            .order_by(WorkItemComment.created_date.asc())
        )
        with self._session_factory() as db:
            return list(db.scalars(stmt))

    def get_watermark(self) -> dt.datetime | None:
        """Latest ``last_synced_at`` across all work items, or None if nothing was synced yet."""
        with self._session_factory() as db:
            value = db.scalar(select(func.max(WorkItem.last_synced_at)))
        return _as_utc(value)
