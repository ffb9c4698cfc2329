"""Initial schema - tasks, audit trail and guardrails.

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # Tasks table
    op.create_table(
        "tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("urgency", sa.String(2), nullable=False, server_default="P3"),
        sa.Column("status", sa.String(), nullable=False, server_default="open"),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("someday", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("follow_up_item", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rollover_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reschedule_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_rolled_over_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_rescheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reality_check_stage", sa.String(), nullable=False, server_default="none"),
        sa.Column("reality_check_due_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tags", JSON, nullable=True),
        sa.Column("context", sa.String(), nullable=True),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("urls", JSON, nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_tasks_urgency"), "tasks", ["urgency"])
    op.create_index(op.f("ix_tasks_status"), "tasks", ["status"])
    op.create_index(op.f("ix_tasks_due_date"), "tasks", ["due_date"])

    # Rollover history
    op.create_table(
        "rollover_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_date", sa.Date(), nullable=True),
        sa.Column("to_date", sa.Date(), nullable=False),
        sa.Column("priority", sa.String(2), nullable=False),
        sa.Column("automatic", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_rollover_history_task_id"), "rollover_history", ["task_id"])

    # Reality check events
    op.create_table(
        "reality_check_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("decision", sa.String(), nullable=False),
        sa.Column("decision_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(op.f("ix_reality_check_events_task_id"), "reality_check_events", ["task_id"])

    # Graveyard
    op.create_table(
        "graveyard",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_graveyard_task_id"), "graveyard", ["task_id"])

    # Priority changes
    op.create_table(
        "priority_changes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("from_priority", sa.String(2), nullable=True),
        sa.Column("to_priority", sa.String(2), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("forced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(op.f("ix_priority_changes_task_id"), "priority_changes", ["task_id"])

    # Guardrails
    op.create_table(
        "guardrails",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", JSON, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("guardrails")
    op.drop_table("priority_changes")
    op.drop_table("graveyard")
    op.drop_table("reality_check_events")
    op.drop_table("rollover_history")
    op.drop_table("tasks")
