"""Azure DevOps REST client (work items + comments) over httpx."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any
from urllib.parse import quote

import httpx

from devops_mirror.core.config import settings
from devops_mirror.core.exceptions import (
    AuthenticationError,
    NetworkError,
    RemoteTimeoutError,
    ValidationError,
    error_from_response,
)
from devops_mirror.integrations.azure_devops.schemas import SyncScope

logger = logging.getLogger(__name__)

BULK_CHUNK_SIZE = 200
SYNCED_WORK_ITEM_TYPES = ("User Story", "Product Backlog Item", "Bug", "Task")


def _wiql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_discovery_wiql(scope: SyncScope) -> str:
    types = ", ".join(_wiql_literal(item) for item in SYNCED_WORK_ITEM_TYPES)
    clauses = [
        f"[System.WorkItemType] IN ({types})",
        "[System.State] <> 'Removed'",
    ]
    if scope.project:
        clauses.append(f"[System.TeamProject] = {_wiql_literal(scope.project)}")
    emails = [email.strip() for email in scope.user_emails if email.strip()]
    if emails:
        clauses.append("(" + " OR ".join(f"[System.AssignedTo] = {_wiql_literal(email)}" for email in emails) + ")")
    if scope.changed_since is not None:
        since = scope.changed_since
        if since.tzinfo is None:
            since = since.replace(tzinfo=dt.timezone.utc)
        since_utc = since.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        clauses.append(f"[System.ChangedDate] >= '{since_utc}'")
    return (
        "SELECT [System.Id] FROM WorkItems WHERE "
        + " AND ".join(clauses)
        + " ORDER BY [System.ChangedDate] DESC"
    )


class AzureDevOpsClient:
    supports_bulk_detail = True

    def __init__(
        self,
        *,
        organization: str | None = None,
        project: str | None = None,
        pat: str | None = None,
        base_url: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.organization = (organization or settings.AZURE_DEVOPS_ORGANIZATION).strip()
        self.project = (project or settings.AZURE_DEVOPS_PROJECT).strip()
        self.pat = (pat if pat is not None else settings.AZURE_DEVOPS_PAT).strip()
        self.base_url = (base_url or settings.AZURE_DEVOPS_BASE_URL).rstrip("/")
        self.api_version = api_version or settings.AZURE_DEVOPS_API_VERSION
        self.comments_api_version = settings.AZURE_DEVOPS_COMMENTS_API_VERSION
        self.timeout = timeout or settings.AZURE_DEVOPS_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def organization_url(self) -> str:
        return f"{self.base_url}/{quote(self.organization)}"

    @property
    def project_url(self) -> str:
        return f"{self.organization_url}/{quote(self.project)}"

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            auth=("", self.pat),
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        work_item_id: int | None = None,
        api_version: str | None = None,
    ) -> Any:
        query = {"api-version": api_version or self.api_version}
        if params:
            query.update(params)
        logger.debug("Azure DevOps API request: %s %s", method, url)
        try:
            async with self._http_client() as client:
                response = await client.request(method, url, params=query, json=json)
        except httpx.TimeoutException as exc:
            raise RemoteTimeoutError() from exc
        except httpx.TransportError as exc:
            raise NetworkError() from exc

        if response.is_error:
            raise error_from_response(response, work_item_id=work_item_id)
        if not response.content:
            return {}
        return response.json()

    async def check_auth(self) -> bool:
        if not self.pat or not self.organization:
            logger.warning("AZURE_DEVOPS_PAT or AZURE_DEVOPS_ORGANIZATION is not set")
            return False
        try:
            await self._request("GET", f"{self.organization_url}/_apis/projects", params={"$top": 1})
        except AuthenticationError:
            return False
        return True

    async def discover_changed_ids(self, scope: SyncScope) -> list[int]:
        params = {"timePrecision": "true"} if scope.changed_since is not None else None
        payload = await self._request(
            "POST",
            f"{self.project_url}/_apis/wit/wiql",
            params=params,
            json={"query": build_discovery_wiql(scope)},
        )
        rows = payload.get("workItems") if isinstance(payload, dict) else None
        ids: list[int] = []
        for row in list(rows or []):
            if isinstance(row, dict) and isinstance(row.get("id"), int):
                ids.append(row["id"])
        return ids

    async def get_work_item_detail(self, work_item_id: int) -> dict[str, Any]:
        if work_item_id <= 0:
            raise ValidationError("Work item ID must be greater than 0", field="work_item_id")
        payload = await self._request(
            "GET",
            f"{self.project_url}/_apis/wit/workitems/{work_item_id}",
            params={"$expand": "all"},
            work_item_id=work_item_id,
        )
        if not isinstance(payload, dict) or not payload:
            raise ValidationError(f"Work item {work_item_id} returned an empty payload")
        return payload

    async def get_work_items_bulk(self, work_item_ids: list[int]) -> list[dict[str, Any]]:
        ids = sorted({item for item in work_item_ids if item > 0})
        rows: list[dict[str, Any]] = []
        for start in range(0, len(ids), BULK_CHUNK_SIZE):
            chunk = ids[start : start + BULK_CHUNK_SIZE]
            payload = await self._request(
                "GET",
                f"{self.project_url}/_apis/wit/workitems",
                params={"ids": ",".join(str(item) for item in chunk), "$expand": "all", "errorPolicy": "omit"},
            )
            values = payload.get("value") if isinstance(payload, dict) else None
            rows.extend(item for item in list(values or []) if isinstance(item, dict))
        return rows

    async def get_work_item_comments(self, work_item_id: int) -> list[dict[str, Any]]:
        url = f"{self.project_url}/_apis/wit/workItems/{work_item_id}/comments"
        rows: list[dict[str, Any]] = []
        continuation: str | None = None
        while True:
            params = {"continuationToken": continuation} if continuation else None
            page = await self._request(
                "GET",
                url,
                params=params,
                work_item_id=work_item_id,
                api_version=self.comments_api_version,
            )
            if not isinstance(page, dict):
                break
            rows.extend(item for item in list(page.get("comments") or []) if isinstance(item, dict))
            continuation = page.get("continuationToken") or None
            if not continuation:
                break
        return rows

    async def post_comment(self, work_item_id: int, text: str) -> dict[str, Any]:
        value = (text or "").strip()
        if not value:
            raise ValidationError("Comment text cannot be empty", field="text")
        payload = await self._request(
            "POST",
            f"{self.project_url}/_apis/wit/workItems/{work_item_id}/comments",
            json={"text": value},
            work_item_id=work_item_id,
            api_version=self.comments_api_version,
        )
        return payload if isinstance(payload, dict) else {}
