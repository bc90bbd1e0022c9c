"""Background Azure DevOps sync loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from devops_mirror.integrations.azure_devops.schemas import SyncScope
from devops_mirror.integrations.azure_devops.service import DEFAULT_SYNC_INTERVAL_MINUTES, WorkItemSyncService

logger = logging.getLogger(__name__)


def resolve_sync_interval_minutes(raw: Any) -> int:
    if raw is None:
        return DEFAULT_SYNC_INTERVAL_MINUTES
    text = str(raw).strip()
    if not text:
        return DEFAULT_SYNC_INTERVAL_MINUTES
    try:
        value = int(text)
    except ValueError:
        value = 0
    if value <= 0:
        logger.warning(
            "Invalid AZURE_DEVOPS_SYNC_INTERVAL_MINUTES value: %s. Using default %s minutes.",
            raw,
            DEFAULT_SYNC_INTERVAL_MINUTES,
        )
        return DEFAULT_SYNC_INTERVAL_MINUTES
    return value


class BackgroundSync:
    """
    Runs a sync every ``interval_minutes``, starting one interval after ``start()``.

    A failing tick is logged and the loop keeps going. ``stop()`` prevents the
    next tick and waits for a run that is already in flight.
    """

    def __init__(
        self,
        service: WorkItemSyncService,
        scope: SyncScope | None = None,
        *,
        interval_minutes: float = DEFAULT_SYNC_INTERVAL_MINUTES,
        detailed: bool = True,
    ) -> None:
        self.service = service
        self.scope = scope or SyncScope()
        self.interval_minutes = interval_minutes
        self.detailed = detailed
        self.ticks = 0
        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run_once(self) -> None:
        self.ticks += 1
        try:
            if self.detailed:
                result = await self.service.perform_sync_detailed(self.scope)
            else:
                result = await self.service.perform_sync(self.scope)
        except Exception:  # noqa: BLE001
            logger.exception("Background sync run failed")
            return
        logger.info(
            "Background sync completed: mode=%s persisted=%s failed=%s comments=%s",
            result.mode,
            result.persisted,
            len(result.failed_ids),
            result.comments_stored,
        )

    async def _loop(self) -> None:
        interval = max(0.0, float(self.interval_minutes) * 60)
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self._run_once()
            else:
                return

    def start(self) -> None:
        if self.running:
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="azure-devops-background-sync")
        logger.info(
            "Background %s sync started (every %s minutes)",
            "detailed" if self.detailed else "shallow",
            self.interval_minutes,
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        self._stop.set()
        await task
        logger.info("Background sync stopped")
