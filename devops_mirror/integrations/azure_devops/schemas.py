"""DTOs for Azure DevOps sync runs."""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SyncPhase(str, Enum):
    idle = "idle"
    authenticating = "authenticating"
    discovering = "discovering"
    fetching_detail = "fetching_detail"
    persisting = "persisting"
    syncing_children = "syncing_children"
    failed = "failed"


class SyncScope(BaseModel):
    """Identity filters for one sync invocation; passed explicitly instead of held globally."""

    model_config = ConfigDict(frozen=True)

    user_emails: tuple[str, ...] = ()
    changed_since: dt.datetime | None = None
    project: str | None = Field(default=None, max_length=255)


class SyncRunResult(BaseModel):
    status: str = "ok"
    mode: str = "detailed"
    state: SyncPhase = SyncPhase.idle
    started_at: dt.datetime
    finished_at: dt.datetime | None = None
    duration_ms: int = 0
    concurrency: int = 0
    discovered: int = 0
    fetched: int = 0
    failed_ids: list[int] = Field(default_factory=list)
    persisted: int = 0
    comments_checked: int = 0
    comment_syncs: int = 0
    comments_stored: int = 0
    comment_failures: list[int] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
