"""Convenience imports for Alembic metadata discovery."""

from devops_mirror.models.work_item import WorkItem, WorkItemComment  # noqa: F401
