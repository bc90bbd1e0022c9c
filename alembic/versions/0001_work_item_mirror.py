"""work item mirror schema

Revision ID: 0001_work_item_mirror
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_work_item_mirror"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "work_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("state", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("assigned_to", sa.String(length=255), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("azure_url", sa.String(length=512), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("iteration_path", sa.String(length=512), nullable=True),
        sa.Column("area_path", sa.String(length=512), nullable=True),
        sa.Column("board_column", sa.String(length=128), nullable=True),
        sa.Column("board_column_done", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority", sa.Integer(), nullable=True),
        sa.Column("severity", sa.String(length=64), nullable=True),
        sa.Column("tags", sa.Text(), nullable=True),
        sa.Column("created_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("changed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("state_change_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("changed_by", sa.String(length=255), nullable=True),
        sa.Column("closed_by", sa.String(length=255), nullable=True),
        sa.Column("resolved_by", sa.String(length=255), nullable=True),
        sa.Column("story_points", sa.Float(), nullable=True),
        sa.Column("effort", sa.Float(), nullable=True),
        sa.Column("remaining_work", sa.Float(), nullable=True),
        sa.Column("completed_work", sa.Float(), nullable=True),
        sa.Column("original_estimate", sa.Float(), nullable=True),
        sa.Column("acceptance_criteria", sa.Text(), nullable=True),
        sa.Column("repro_steps", sa.Text(), nullable=True),
        sa.Column("system_info", sa.Text(), nullable=True),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("rev", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("watermark", sa.Integer(), nullable=True),
        sa.Column("url", sa.String(length=512), nullable=True),
        sa.Column("comment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("has_attachments", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("team_project", sa.String(length=255), nullable=True),
        sa.Column("area_id", sa.Integer(), nullable=True),
        sa.Column("node_id", sa.Integer(), nullable=True),
        sa.Column("stack_rank", sa.Float(), nullable=True),
        sa.Column("value_area", sa.String(length=64), nullable=True),
        sa.Column("raw_json", sa.Text(), nullable=False),
    )
    op.create_index(op.f("ix_work_items_state"), "work_items", ["state"], unique=False)
    op.create_index(op.f("ix_work_items_type"), "work_items", ["type"], unique=False)
    op.create_index(op.f("ix_work_items_assigned_to"), "work_items", ["assigned_to"], unique=False)
    op.create_index(op.f("ix_work_items_last_updated_at"), "work_items", ["last_updated_at"], unique=False)
    op.create_index(op.f("ix_work_items_last_synced_at"), "work_items", ["last_synced_at"], unique=False)
    op.create_index(op.f("ix_work_items_parent_id"), "work_items", ["parent_id"], unique=False)

    op.create_table(
        "work_item_comments",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "work_item_id",
            sa.Integer(),
            sa.ForeignKey(
                "work_items.id",
                name="fk_work_item_comments_work_item_id_work_items",
                ondelete="CASCADE",
            ),
            nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("created_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("modified_by", sa.String(length=255), nullable=True),
        sa.Column("modified_date", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_work_item_comments_work_item_id"), "work_item_comments", ["work_item_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_work_item_comments_work_item_id"), table_name="work_item_comments")
    op.drop_table("work_item_comments")
    op.drop_index(op.f("ix_work_items_parent_id"), table_name="work_items")
    op.drop_index(op.f("ix_work_items_last_synced_at"), table_name="work_items")
    op.drop_index(op.f("ix_work_items_last_updated_at"), table_name="work_items")
    op.drop_index(op.f("ix_work_items_assigned_to"), table_name="work_items")
    op.drop_index(op.f("ix_work_items_type"), table_name="work_items")
    op.drop_index(op.f("ix_work_items_state"), table_name="work_items")
    op.drop_table("work_items")
