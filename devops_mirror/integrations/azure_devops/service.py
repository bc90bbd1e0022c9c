"""Azure DevOps -> DB sync orchestration (detailed + shallow runs)."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from devops_mirror.core.config import settings
from devops_mirror.core.exceptions import (
    AuthenticationError,
    SyncInProgressError,
    ValidationError,
    classify_error,
)
from devops_mirror.core.resilience import CircuitBreakerRegistry, ResiliencePolicy, apply_policy
from devops_mirror.integrations.azure_devops.mapper import (
    NormalizedComment,
    NormalizedWorkItem,
    map_comment,
    map_work_item,
)
from devops_mirror.integrations.azure_devops.policies import DEFAULT_POLICIES, SyncPolicies
from devops_mirror.integrations.azure_devops.provider import RemoteProvider
from devops_mirror.integrations.azure_devops.schemas import SyncPhase, SyncRunResult, SyncScope
from devops_mirror.services.change_detection import needs_child_sync
from devops_mirror.services.work_items import WorkItemStore

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
DEFAULT_SYNC_INTERVAL_MINUTES = 5

T = TypeVar("T")
ItemT = TypeVar("ItemT")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def resolve_concurrency(value: Any) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return DEFAULT_CONCURRENCY
    try:
        parsed = int(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        parsed = 0
    if parsed <= 0 or isinstance(value, bool):
        logger.warning("Invalid sync concurrency value: %s. Using default %s.", value, DEFAULT_CONCURRENCY)
        return DEFAULT_CONCURRENCY
    return parsed


def _unique_ids(ids: Sequence[Any]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for value in ids:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0 or value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


class WorkItemSyncService:
    """
    Runs one sync at a time through the phases
    authenticating -> discovering -> fetching_detail -> persisting -> syncing_children.

    Per-record fetch and comment failures are logged and skipped. Authentication
    and batch persistence failures end the run and propagate.
    """

    def __init__(
        self,
        provider: RemoteProvider,
        store: WorkItemStore,
        *,
        concurrency: int | None = None,
        authenticator: Callable[[], Awaitable[bool]] | None = None,
        policies: SyncPolicies = DEFAULT_POLICIES,
        registry: CircuitBreakerRegistry | None = None,
        interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
        organization: str | None = None,
        project: str | None = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.authenticator = authenticator or provider.check_auth
        self.concurrency = resolve_concurrency(
            concurrency if concurrency is not None else settings.AZURE_DEVOPS_SYNC_CONCURRENCY
        )
        self.policies = policies
        self.interval_minutes = interval_minutes
        self.organization = organization
        self.project = project
        self._registry = registry
        self._run_lock = asyncio.Lock()
        self.phase = SyncPhase.idle
        self.last_result: SyncRunResult | None = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    async def _call(self, operation: Callable[[], Awaitable[T]], policy: ResiliencePolicy) -> T:
        return await apply_policy(operation, policy, registry=self._registry)

    def _enter(self, result: SyncRunResult, phase: SyncPhase) -> None:
        self.phase = phase
        result.state = phase

    async def _authenticate(self) -> None:
        try:
            ok = await self.authenticator()
        except AuthenticationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_error(exc) from exc
        if not ok:
            raise AuthenticationError()

    async def _discover(self, scope: SyncScope) -> list[int]:
        ids = await self._call(lambda: self.provider.discover_changed_ids(scope), self.policies.discovery)
        return _unique_ids(list(ids or []))

    def _map(self, raw: Any, work_item_id: int | None = None) -> NormalizedWorkItem:
        mapped = map_work_item(
            raw,
            work_item_id=work_item_id,
            organization=self.organization,
            project=self.project,
        )
        if mapped.id is None:
            raise ValueError("missing_work_item_id")
        return mapped

    async def _run_pool(
        self,
        items: Sequence[ItemT],
        handler: Callable[[int, ItemT], Awaitable[None]],
        *,
        name: str,
    ) -> None:
        """Drain ``items`` with at most ``concurrency`` workers. Handlers own their
        error handling; a crashed worker never cancels its siblings."""
        queue: asyncio.Queue[tuple[int, ItemT]] = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))

        async def worker() -> None:
            while True:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await handler(index, item)

        workers = [
            asyncio.create_task(worker(), name=f"{name}-worker-{number}")
            for number in range(min(self.concurrency, len(items)))
        ]
        outcomes = await asyncio.gather(*workers, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error("%s worker crashed: %s", name, outcome)

    async def _fetch_details(self, ids: list[int], result: SyncRunResult) -> list[NormalizedWorkItem]:
        fetched: list[NormalizedWorkItem | None] = [None] * len(ids)

        async def fetch_one(index: int, work_item_id: int) -> None:
            try:
                raw = await self._call(
                    lambda: self.provider.get_work_item_detail(work_item_id),
                    self.policies.detail,
                )
                fetched[index] = self._map(raw, work_item_id)
            except Exception as exc:  # noqa: BLE001
                result.failed_ids.append(work_item_id)
                logger.warning("Failed to fetch work item %s: %s", work_item_id, classify_error(exc).message)

        await self._run_pool(ids, fetch_one, name="detail")
        # Discovery order, independent of completion order.
        return [item for item in fetched if item is not None]

    async def _sync_comments(
        self,
        items: Sequence[NormalizedWorkItem],
        watermark: dt.datetime | None,
        result: SyncRunResult,
    ) -> None:
        candidates: list[NormalizedWorkItem] = []
        for item in items:
            result.comments_checked += 1
            if needs_child_sync(item.id, item.comment_count, item.changed_date, watermark):
                candidates.append(item)

        if not candidates:
            logger.info("Comment sync complete: %s work items checked, 0 needed comment sync", len(items))
            return
        logger.info("Found %s work items needing comment sync", len(candidates))

        async def sync_one(_index: int, item: NormalizedWorkItem) -> None:
            work_item_id = item.id
            try:
                raw_comments = await self._call(
                    lambda: self.provider.get_work_item_comments(work_item_id),
                    self.policies.comments,
                )
                comments: list[NormalizedComment] = []
                for payload in list(raw_comments or []):
                    try:
                        comments.append(map_comment(payload, work_item_id))
                    except (AttributeError, ValueError) as exc:
                        logger.debug("Skipping malformed comment on work item %s: %s", work_item_id, exc)
                stored = await asyncio.to_thread(self.store.upsert_comments, comments)
            except Exception as exc:  # noqa: BLE001
                result.comment_failures.append(work_item_id)
                logger.warning(
                    "Failed to sync comments for work item %s: %s",
                    work_item_id,
                    classify_error(exc).message,
                )
                return
            result.comment_syncs += 1
            result.comments_stored += stored

        await self._run_pool(candidates, sync_one, name="comments")
        logger.info(
            "Comment sync complete: %s work items checked, %s had comments synced (%s total comments)",
            result.comments_checked,
            result.comment_syncs,
            result.comments_stored,
        )

    def _finish(self, result: SyncRunResult, started: float) -> SyncRunResult:
        result.finished_at = _utcnow()
        result.duration_ms = int((time.perf_counter() - started) * 1000)
        self.last_result = result
        return result

    def _fail(self, result: SyncRunResult, started: float, exc: Exception) -> Exception:
        failed_phase = result.state
        classified = classify_error(exc)
        result.status = "failed"
        result.errors.append(f"{failed_phase.value}: {classified.message}")
        self._enter(result, SyncPhase.failed)
        self._finish(result, started)
        logger.error("%s sync failed during %s: %s", result.mode.capitalize(), failed_phase.value, classified.message)
        return classified

    async def perform_sync_detailed(self, scope: SyncScope | None = None) -> SyncRunResult:
        if self._run_lock.locked():
            raise SyncInProgressError()
        scope = scope or SyncScope()
        async with self._run_lock:
            started = time.perf_counter()
            result = SyncRunResult(mode="detailed", started_at=_utcnow(), concurrency=self.concurrency)
            try:
                self._enter(result, SyncPhase.authenticating)
                await self._authenticate()

                self._enter(result, SyncPhase.discovering)
                ids = await self._discover(scope)
                result.discovered = len(ids)
                logger.info("Discovered %s work items for detailed sync", len(ids))

                self._enter(result, SyncPhase.fetching_detail)
                items = await self._fetch_details(ids, result)
                result.fetched = len(items)

                self._enter(result, SyncPhase.persisting)
                # Read before writing: the fresh last_synced_at would hide every change.
                watermark = await asyncio.to_thread(self.store.get_watermark)
                result.persisted = await asyncio.to_thread(self.store.upsert_work_items, items)

                self._enter(result, SyncPhase.syncing_children)
                await self._sync_comments(items, watermark, result)
            except Exception as exc:  # noqa: BLE001
                classified = self._fail(result, started, exc)
                if classified is exc:
                    raise
                raise classified from exc

            self._enter(result, SyncPhase.idle)
            self._finish(result, started)
            logger.info(
                "Synced %s work items with detailed data in %sms (%s discovered, %s failed, concurrency %s)",
                result.persisted,
                result.duration_ms,
                result.discovered,
                len(result.failed_ids),
                self.concurrency,
            )
            return result

    async def _fetch_shallow(self, ids: list[int], result: SyncRunResult) -> list[NormalizedWorkItem]:
        bulk = getattr(self.provider, "get_work_items_bulk", None)
        if getattr(self.provider, "supports_bulk_detail", False) and bulk is not None:
            try:
                raws = await self._call(lambda: bulk(ids), self.policies.bulk_detail)
            except NotImplementedError:
                logger.info("Provider has no bulk detail endpoint; fetching work items one by one")
            else:
                items: list[NormalizedWorkItem] = []
                for raw in list(raws or []):
                    try:
                        items.append(self._map(raw))
                    except Exception as exc:  # noqa: BLE001
                        logger.warning("Skipping unmappable work item payload: %s", exc)
                returned = {item.id for item in items}
                result.failed_ids.extend(work_item_id for work_item_id in ids if work_item_id not in returned)
                by_id = {item.id: item for item in items}
                return [by_id[work_item_id] for work_item_id in ids if work_item_id in by_id]

        items = []
        for work_item_id in ids:
            try:
                raw = await self._call(
                    lambda: self.provider.get_work_item_detail(work_item_id),
                    self.policies.detail,
                )
                items.append(self._map(raw, work_item_id))
            except Exception as exc:  # noqa: BLE001
                result.failed_ids.append(work_item_id)
                logger.warning("Failed to fetch work item %s: %s", work_item_id, classify_error(exc).message)
        return items

    async def perform_sync(self, scope: SyncScope | None = None) -> SyncRunResult:
        """Shallow refresh: discovery plus bulk detail, no comment sync."""
        if self._run_lock.locked():
            raise SyncInProgressError()
        scope = scope or SyncScope()
        async with self._run_lock:
            started = time.perf_counter()
            result = SyncRunResult(mode="shallow", started_at=_utcnow(), concurrency=1)
            try:
                self._enter(result, SyncPhase.authenticating)
                await self._authenticate()

                self._enter(result, SyncPhase.discovering)
                ids = await self._discover(scope)
                result.discovered = len(ids)

                self._enter(result, SyncPhase.fetching_detail)
                items = await self._fetch_shallow(ids, result)
                result.fetched = len(items)

                self._enter(result, SyncPhase.persisting)
                result.persisted = await asyncio.to_thread(self.store.upsert_work_items, items)
            except Exception as exc:  # noqa: BLE001
                classified = self._fail(result, started, exc)
                if classified is exc:
                    raise
                raise classified from exc

            self._enter(result, SyncPhase.idle)
            self._finish(result, started)
            logger.info("Synced %s work items in %sms", result.persisted, result.duration_ms)
            return result

    async def should_sync(self, *, now: dt.datetime | None = None) -> bool:
        watermark = await asyncio.to_thread(self.store.get_watermark)
        if watermark is None:
            return True
        current = now or _utcnow()
        return current - watermark > dt.timedelta(minutes=self.interval_minutes)

    async def post_comment(self, work_item_id: int, text: str) -> dict[str, Any]:
        value = (text or "").strip()
        if not value:
            raise ValidationError("Comment text cannot be empty", field="text")
        try:
            payload = await self._call(
                lambda: self.provider.post_comment(work_item_id, value),
                self.policies.comment_write,
            )
        except Exception as exc:  # noqa: BLE001
            classified = classify_error(exc)
            if classified is exc:
                raise
            raise classified from exc

        if isinstance(payload, dict) and payload.get("id"):
            parent = await asyncio.to_thread(self.store.get_work_item, work_item_id)
            if parent is not None:
                await asyncio.to_thread(self.store.upsert_comments, [map_comment(payload, work_item_id)])
        return payload if isinstance(payload, dict) else {}
