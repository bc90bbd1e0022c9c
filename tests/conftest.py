from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from devops_mirror.core.resilience import CircuitBreakerRegistry, ResiliencePolicy, RetryPolicy  # noqa: E402
from devops_mirror.db.base import Base  # noqa: E402
from devops_mirror.integrations.azure_devops import policies  # noqa: E402
from devops_mirror.services.work_items import WorkItemStore  # noqa: E402


def _no_wait(policy: ResiliencePolicy) -> ResiliencePolicy:
    retry = RetryPolicy(max_attempts=policy.retry.max_attempts, initial_delay=0.0, max_delay=0.0)
    return replace(policy, retry=retry, timeout=5.0)


FAST_POLICIES = policies.SyncPolicies(
    discovery=_no_wait(policies.LIST_POLICY),
    detail=_no_wait(policies.DETAIL_POLICY),
    bulk_detail=_no_wait(policies.BATCH_POLICY),
    comments=_no_wait(policies.COMMENT_POLICY),
    comment_write=_no_wait(policies.COMMENT_WRITE_POLICY),
)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def store(session_factory) -> WorkItemStore:
    return WorkItemStore(session_factory)


@pytest.fixture()
def registry() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry()


@pytest.fixture()
def fast_policies() -> policies.SyncPolicies:
    return FAST_POLICIES


@pytest.fixture()
def work_item_payload():
    def build(
        work_item_id: int | None,
        *,
        title: str | None = None,
        state: str = "Active",
        work_item_type: str = "User Story",
        assigned_to: Any = None,
        comment_count: int = 0,
        changed: str = "2025-01-08T10:00:00Z",
        parent_id: int | None = None,
    ) -> dict[str, Any]:
        relations = []
        if parent_id is not None:
            relations.append(
                {
                    "rel": "System.LinkTypes.Hierarchy-Reverse",
                    "url": f"https://dev.azure.com/org/_apis/wit/workItems/{parent_id}",
                    "attributes": {"isLocked": False, "name": "Parent"},
                }
            )
        payload: dict[str, Any] = {
            "rev": 4,
            "fields": {
                "System.Title": title or f"Work item {work_item_id}",
                "System.State": state,
                "System.WorkItemType": work_item_type,
                "System.AssignedTo": assigned_to
                if assigned_to is not None
                else {"displayName": "Nathan Vale", "uniqueName": "nathan.vale@example.com"},
                "System.CreatedDate": "2025-01-01T09:00:00Z",
                "System.ChangedDate": changed,
                "System.CommentCount": comment_count,
                "System.TeamProject": "Mirror",
                "Microsoft.VSTS.Common.Priority": 2,
            },
            "relations": relations,
        }
        if work_item_id is not None:
            payload["id"] = work_item_id
            payload["url"] = f"https://dev.azure.com/org/_apis/wit/workItems/{work_item_id}"
        return payload

    return build
