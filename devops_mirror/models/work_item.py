"""Mirrored Azure DevOps work item and comment models."""

from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from devops_mirror.db.base import Base


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class WorkItem(Base):
    __tablename__ = "work_items"

    # Remote Azure DevOps id; never generated locally.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    state: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False, default="", index=True)
    assigned_to: Mapped[str] = mapped_column(String(255), nullable=False, default="Unassigned", index=True)
    last_updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    azure_url: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    last_synced_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Sprint/board
    iteration_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    area_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    board_column: Mapped[str | None] = mapped_column(String(128), nullable=True)
    board_column_done: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    severity: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    changed_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    state_change_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    story_points: Mapped[float | None] = mapped_column(Float, nullable=True)
    effort: Mapped[float | None] = mapped_column(Float, nullable=True)
    remaining_work: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed_work: Mapped[float | None] = mapped_column(Float, nullable=True)
    original_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)

    acceptance_criteria: Mapped[str | None] = mapped_column(Text, nullable=True)
    repro_steps: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_info: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Hierarchy parent; not a foreign key because the parent may be outside the sync scope.
    parent_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    rev: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    watermark: Mapped[int | None] = mapped_column(Integer, nullable=True)
    url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    comment_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    has_attachments: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    team_project: Mapped[str | None] = mapped_column(String(255), nullable=True)
    area_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    node_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stack_rank: Mapped[float | None] = mapped_column(Float, nullable=True)
    value_area: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Complete last-fetched payload, serialized verbatim.
    raw_json: Mapped[str] = mapped_column(Text, nullable=False)

    comments: Mapped[list[WorkItemComment]] = relationship(
        "WorkItemComment",
        back_populates="work_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="WorkItemComment.created_date",
    )


class WorkItemComment(Base):
    __tablename__ = "work_item_comments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    work_item_id: Mapped[int] = mapped_column(ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_date: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    modified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    modified_date: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    work_item: Mapped[WorkItem] = relationship("WorkItem", back_populates="comments")
