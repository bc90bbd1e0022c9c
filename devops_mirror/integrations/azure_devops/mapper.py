"""Mapping utilities from Azure DevOps work item payloads to normalized rows."""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
import re
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import quote

from devops_mirror.core.config import settings

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"
PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"
ATTACHMENT_RELATION = "AttachedFile"
_TRAILING_ID_RE = re.compile(r"/(\d+)$")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _to_utc(parsed: dt.datetime) -> dt.datetime | None:
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=dt.timezone.utc)
    try:
        return parsed.astimezone(dt.timezone.utc)
    except OverflowError:
        # e.g. 0001-01-01T00:00:00+05:00 has no UTC equivalent
        logger.warning("Azure DevOps datetime out of range: %s", parsed.isoformat())
        return None


def _parse_datetime(value: Any) -> dt.datetime | None:
    if isinstance(value, dt.datetime):
        return _to_utc(value)
    if not value or not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    candidates = [
        normalized.replace("Z", "+00:00"),
        normalized,
    ]
    for candidate in candidates:
        try:
            parsed = dt.datetime.fromisoformat(candidate)
        except ValueError:
            continue
        return _to_utc(parsed)
    formats = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z")
    for fmt in formats:
        try:
            parsed = dt.datetime.strptime(normalized, fmt)
        except ValueError:
            continue
        return _to_utc(parsed)
    logger.warning("Could not parse Azure DevOps datetime: %s", value)
    return None


def _parse_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(parsed) or math.isinf(parsed) else parsed


def _parse_int(value: Any) -> int | None:
    parsed = _parse_float(value)
    if parsed is None:
        return None
    return int(parsed)


def _parse_id(value: Any) -> int | None:
    parsed = _parse_float(value)
    if parsed is None or parsed <= 0 or not parsed.is_integer():
        return None
    return int(parsed)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def extract_person_name(person: Any) -> str:
    if not person:
        return UNASSIGNED
    if isinstance(person, str):
        return person.strip() or UNASSIGNED
    if isinstance(person, dict):
        name = person.get("uniqueName") or person.get("displayName")
        if isinstance(name, str) and name.strip():
            return name.strip()
    return UNASSIGNED


def _optional_person(person: Any) -> str | None:
    return extract_person_name(person) if person else None


def extract_parent_id(relations: Any) -> int | None:
    if not isinstance(relations, list):
        return None
    for relation in relations:
        if not isinstance(relation, dict) or relation.get("rel") != PARENT_RELATION:
            continue
        url = str(relation.get("url") or "").strip()
        match = _TRAILING_ID_RE.search(url)
        return int(match.group(1)) if match else None
    return None


def has_attachments(relations: Any) -> bool:
    if not isinstance(relations, list):
        return False
    return any(isinstance(relation, dict) and relation.get("rel") == ATTACHMENT_RELATION for relation in relations)


def build_work_item_url(work_item_id: int, *, organization: str | None = None, project: str | None = None) -> str:
    base_url = settings.AZURE_DEVOPS_BASE_URL.rstrip("/")
    org = (organization or settings.AZURE_DEVOPS_ORGANIZATION).strip()
    proj = (project or settings.AZURE_DEVOPS_PROJECT).strip()
    return f"{base_url}/{org}/{quote(proj)}/_workitems/edit/{work_item_id}"


def serialize_raw(raw: Any) -> str:
    try:
        return json.dumps(raw, default=str)
    except (TypeError, ValueError) as exc:
        # Non-string keys or circular references; keep a readable copy instead.
        logger.warning("Work item payload is not JSON serializable: %s", exc)
        return json.dumps(repr(raw))


@dataclass(frozen=True)
class NormalizedWorkItem:
    id: int | None
    title: str
    state: str
    type: str
    assigned_to: str
    last_updated_at: dt.datetime
    azure_url: str
    description: str
    iteration_path: str | None
    area_path: str | None
    board_column: str | None
    board_column_done: bool
    priority: int | None
    severity: str | None
    tags: str | None
    created_date: dt.datetime | None
    changed_date: dt.datetime | None
    closed_date: dt.datetime | None
    resolved_date: dt.datetime | None
    activated_date: dt.datetime | None
    state_change_date: dt.datetime | None
    created_by: str | None
    changed_by: str | None
    closed_by: str | None
    resolved_by: str | None
    story_points: float | None
    effort: float | None
    remaining_work: float | None
    completed_work: float | None
    original_estimate: float | None
    acceptance_criteria: str | None
    repro_steps: str | None
    system_info: str | None
    parent_id: int | None
    rev: int | None
    reason: str | None
    watermark: int | None
    url: str | None
    comment_count: int
    has_attachments: bool
    team_project: str | None
    area_id: int | None
    node_id: int | None
    stack_rank: float | None
    value_area: str | None
    raw_json: str

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NormalizedComment:
    id: str
    work_item_id: int
    text: str
    created_by: str
    created_date: dt.datetime
    modified_by: str | None
    modified_date: dt.datetime | None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


def map_work_item(
    raw: Any,
    *,
    work_item_id: int | None = None,
    organization: str | None = None,
    project: str | None = None,
) -> NormalizedWorkItem:
    """Map an expanded work item payload. Never raises; ``id`` is None when unknown."""
    item = raw if isinstance(raw, dict) else {}
    fields = item.get("fields") if isinstance(item.get("fields"), dict) else {}
    relations = item.get("relations") or []

    item_id = _parse_id(item.get("id"))
    if item_id is None:
        item_id = work_item_id

    created_date = _parse_datetime(fields.get("System.CreatedDate"))
    changed_date = _parse_datetime(fields.get("System.ChangedDate"))

    return NormalizedWorkItem(
        id=item_id,
        title=_optional_text(fields.get("System.Title")) or "",
        state=_optional_text(fields.get("System.State")) or "",
        type=_optional_text(fields.get("System.WorkItemType")) or "",
        assigned_to=extract_person_name(fields.get("System.AssignedTo")),
        last_updated_at=changed_date or created_date or _utcnow(),
        azure_url=build_work_item_url(item_id, organization=organization, project=project) if item_id else "",
        description=_optional_text(fields.get("System.Description")) or "",
        iteration_path=_optional_text(fields.get("System.IterationPath")),
        area_path=_optional_text(fields.get("System.AreaPath")),
        board_column=_optional_text(fields.get("System.BoardColumn")),
        board_column_done=fields.get("System.BoardColumnDone") is True,
        priority=_parse_int(fields.get("Microsoft.VSTS.Common.Priority")),
        severity=_optional_text(fields.get("Microsoft.VSTS.Common.Severity")),
        tags=_optional_text(fields.get("System.Tags")),
        created_date=created_date,
        changed_date=changed_date,
        closed_date=_parse_datetime(fields.get("Microsoft.VSTS.Common.ClosedDate")),
        resolved_date=_parse_datetime(fields.get("Microsoft.VSTS.Common.ResolvedDate")),
        activated_date=_parse_datetime(fields.get("Microsoft.VSTS.Common.ActivatedDate")),
        state_change_date=_parse_datetime(fields.get("Microsoft.VSTS.Common.StateChangeDate")),
        created_by=_optional_person(fields.get("System.CreatedBy")),
        changed_by=_optional_person(fields.get("System.ChangedBy")),
        closed_by=_optional_person(fields.get("Microsoft.VSTS.Common.ClosedBy")),
        resolved_by=_optional_person(fields.get("Microsoft.VSTS.Common.ResolvedBy")),
        story_points=_parse_float(fields.get("Microsoft.VSTS.Scheduling.StoryPoints")),
        effort=_parse_float(fields.get("Microsoft.VSTS.Scheduling.Effort")),
        remaining_work=_parse_float(fields.get("Microsoft.VSTS.Scheduling.RemainingWork")),
        completed_work=_parse_float(fields.get("Microsoft.VSTS.Scheduling.CompletedWork")),
        original_estimate=_parse_float(fields.get("Microsoft.VSTS.Scheduling.OriginalEstimate")),
        acceptance_criteria=_optional_text(fields.get("Microsoft.VSTS.Common.AcceptanceCriteria")),
        repro_steps=_optional_text(fields.get("Microsoft.VSTS.TCM.ReproSteps")),
        system_info=_optional_text(fields.get("Microsoft.VSTS.TCM.SystemInfo")),
        parent_id=extract_parent_id(relations),
        rev=_parse_int(item.get("rev")),
        reason=_optional_text(fields.get("System.Reason")),
        watermark=_parse_int(fields.get("System.Watermark")),
        url=_optional_text(item.get("url")),
        comment_count=max(0, _parse_int(fields.get("System.CommentCount")) or 0),
        has_attachments=has_attachments(relations),
        team_project=_optional_text(fields.get("System.TeamProject")),
        area_id=_parse_int(fields.get("System.AreaId")),
        node_id=_parse_int(fields.get("System.IterationId")),
        stack_rank=_parse_float(fields.get("Microsoft.VSTS.Common.StackRank")),
        value_area=_optional_text(fields.get("Microsoft.VSTS.Common.ValueArea")),
        raw_json=serialize_raw(raw),
    )


def map_comment(comment: dict[str, Any], work_item_id: int) -> NormalizedComment:
    comment_id = str(comment.get("id") or "").strip()
    if not comment_id:
        raise ValueError("missing_comment_id")
    modified_by = comment.get("modifiedBy")
    return NormalizedComment(
        id=comment_id,
        work_item_id=work_item_id,
        text=_optional_text(comment.get("text")) or "",
        created_by=extract_person_name(comment.get("createdBy")),
        created_date=_parse_datetime(comment.get("createdDate")) or _utcnow(),
        modified_by=extract_person_name(modified_by) if modified_by else None,
        modified_date=_parse_datetime(comment.get("modifiedDate")),
    )
