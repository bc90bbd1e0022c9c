"""Run the Azure DevOps work item mirror.

Usage examples:

    python -m devops_mirror.main --once
    python -m devops_mirror.main --once --shallow
    python -m devops_mirror.main            # background sync until interrupted
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from devops_mirror.core.config import settings
from devops_mirror.core.exceptions import DevOpsMirrorException, InvalidConfigurationError
from devops_mirror.core.logging import setup_logging
from devops_mirror.integrations.azure_devops.auto_sync import BackgroundSync, resolve_sync_interval_minutes
from devops_mirror.integrations.azure_devops.client import AzureDevOpsClient
from devops_mirror.integrations.azure_devops.schemas import SyncScope
from devops_mirror.integrations.azure_devops.service import WorkItemSyncService
from devops_mirror.services.work_items import WorkItemStore

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mirror Azure DevOps work items into the local database")
    parser.add_argument("--once", action="store_true", help="Run one sync and exit")
    parser.add_argument("--shallow", action="store_true", help="Bulk refresh without comment sync")
    parser.add_argument("--init-db", action="store_true", help="Create tables before syncing (no Alembic)")
    return parser.parse_args(argv)


def build_scope() -> SyncScope:
    return SyncScope(
        user_emails=tuple(settings.user_emails),
        project=settings.AZURE_DEVOPS_PROJECT.strip() or None,
    )


def build_service(store: WorkItemStore | None = None) -> WorkItemSyncService:
    if not settings.azure_devops_ready:
        raise InvalidConfigurationError(
            "AZURE_DEVOPS_ORGANIZATION, AZURE_DEVOPS_PROJECT and AZURE_DEVOPS_PAT must be set",
            setting="AZURE_DEVOPS_PAT",
        )
    client = AzureDevOpsClient()
    return WorkItemSyncService(
        client,
        store or WorkItemStore(),
        interval_minutes=resolve_sync_interval_minutes(settings.AZURE_DEVOPS_SYNC_INTERVAL_MINUTES),
        organization=client.organization,
        project=client.project,
    )


async def run(args: argparse.Namespace) -> int:
    store = WorkItemStore()
    if args.init_db:
        store.init_schema()
    service = build_service(store)
    scope = build_scope()
    detailed = settings.AZURE_DEVOPS_SYNC_DETAILED and not args.shallow

    if args.once:
        result = await (service.perform_sync_detailed(scope) if detailed else service.perform_sync(scope))
        logger.info("Sync finished: %s", result.model_dump_json(exclude={"errors"}))
        return 0

    background = BackgroundSync(service, scope, interval_minutes=service.interval_minutes, detailed=detailed)
    if await service.should_sync():
        try:
            await (service.perform_sync_detailed(scope) if detailed else service.perform_sync(scope))
        except DevOpsMirrorException as exc:
            logger.warning("Initial sync failed: %s", exc.message)
    background.start()
    try:
        await asyncio.Event().wait()
    finally:
        await background.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    setup_logging(settings.LOG_LEVEL)
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0
    except DevOpsMirrorException as exc:
        logger.error("%s", exc.message)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
