"""Contract the sync engine consumes from a remote work item system."""

from __future__ import annotations

from typing import Any, Protocol

from devops_mirror.integrations.azure_devops.schemas import SyncScope


class RemoteProvider(Protocol):
    supports_bulk_detail: bool

    async def check_auth(self) -> bool: ...

    async def discover_changed_ids(self, scope: SyncScope) -> list[int]: ...

    async def get_work_item_detail(self, work_item_id: int) -> dict[str, Any]: ...

    async def get_work_items_bulk(self, work_item_ids: list[int]) -> list[dict[str, Any]]: ...

    async def get_work_item_comments(self, work_item_id: int) -> list[dict[str, Any]]: ...

    async def post_comment(self, work_item_id: int, text: str) -> dict[str, Any]: ...
