"""Decide whether a work item's comments need to be fetched again."""

from __future__ import annotations

import datetime as dt
import logging

logger = logging.getLogger(__name__)


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def needs_child_sync(
    parent_id: int,
    child_count: int | None,
    parent_changed_at: dt.datetime | None,
    watermark: dt.datetime | None,
) -> bool:
    """
    Comments are re-fetched only for items that have comments and either were
    never synced (no watermark) or changed after the watermark.
    """
    if not child_count or child_count <= 0:
        return False
    if watermark is None:
        return True
    if parent_changed_at is None:
        logger.debug("Work item %s has no changed date; keeping stored comments", parent_id)
        return False
    return _as_utc(parent_changed_at) > _as_utc(watermark)
