from __future__ import annotations

import datetime as dt

import pytest

from devops_mirror.services.change_detection import needs_child_sync

WATERMARK = dt.datetime(2025, 1, 8, 12, 0, tzinfo=dt.timezone.utc)
BEFORE = WATERMARK - dt.timedelta(hours=1)
AFTER = WATERMARK + dt.timedelta(minutes=1)


@pytest.mark.parametrize(
    ("child_count", "changed_at", "watermark", "expected"),
    [
        (0, AFTER, WATERMARK, False),
        (3, None, None, True),
        (3, AFTER, WATERMARK, True),
        (3, BEFORE, WATERMARK, False),
        (None, AFTER, None, False),
        (-1, AFTER, None, False),
        (3, WATERMARK, WATERMARK, False),
        (3, None, WATERMARK, False),
    ],
)
def test_needs_child_sync_table(child_count, changed_at, watermark, expected) -> None:  # noqa: ANN001
    assert needs_child_sync(1, child_count, changed_at, watermark) is expected


def test_needs_child_sync_compares_naive_watermark_as_utc() -> None:
    naive_watermark = WATERMARK.replace(tzinfo=None)
    assert needs_child_sync(1, 2, AFTER, naive_watermark) is True
    assert needs_child_sync(1, 2, BEFORE, naive_watermark) is False
