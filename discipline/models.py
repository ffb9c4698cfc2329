"""SQLAlchemy models for the task discipline database."""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Priority(StrEnum):
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"


class TaskStatus(StrEnum):
    OPEN = "open"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    WAITING = "waiting"


class Stage(StrEnum):
    """Reality-check escalation stage, listed from mildest to terminal."""

    NONE = "none"
    WARNING = "warning"
    ALERT = "alert"
    INTERVENTION = "intervention"
    AUTO_ARCHIVE = "auto_archive"


class Decision(StrEnum):
    KEEP = "keep"
    DOWNGRADE = "downgrade"
    SOMEDAY = "someday"
    ARCHIVE = "archive"
    AUTO_ARCHIVE = "auto_archive"


def utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware timestamp that always comes back as UTC.

    SQLite drops tzinfo on the way in; re-attach it on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
        list[str]: JSONType,
        datetime: UTCDateTime(),
    }


# =============================================================================
# TASKS
# =============================================================================


class Task(Base):
    """A commitment tracked by the engine."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    urgency: Mapped[str] = mapped_column(String(2), default=Priority.P3.value, index=True)
    status: Mapped[str] = mapped_column(String, default=TaskStatus.OPEN.value, index=True)

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    someday: Mapped[bool] = mapped_column(Boolean, default=False)
    follow_up_item: Mapped[bool] = mapped_column(Boolean, default=False)

    rollover_count: Mapped[int] = mapped_column(Integer, default=0)
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)
    last_rolled_over_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_rescheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    reality_check_stage: Mapped[str] = mapped_column(String, default=Stage.NONE.value)
    reality_check_due_at: Mapped[datetime | None] = mapped_column(nullable=True)

    tags: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    context: Mapped[str | None] = mapped_column(String, nullable=True)
    project_id: Mapped[str | None] = mapped_column(String, nullable=True)
    urls: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    sort_order: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Task {self.id} {self.urgency} {self.status} {self.title!r}>"


# =============================================================================
# AUDIT TABLES (append-only)
# =============================================================================


class RolloverHistory(Base):
    """One row per automatic advance of a task's due date."""

    __tablename__ = "rollover_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    from_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    to_date: Mapped[date] = mapped_column(Date, nullable=False)
    priority: Mapped[str] = mapped_column(String(2), nullable=False)
    automatic: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class RealityCheckEvent(Base):
    """Stage transition or user decision on a reality check."""

    __tablename__ = "reality_check_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    stage: Mapped[str] = mapped_column(String, nullable=False)
    decision: Mapped[str] = mapped_column(String, nullable=False)
    decision_at: Mapped[datetime] = mapped_column(default=utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Graveyard(Base):
    """Tasks removed from active consideration."""

    __tablename__ = "graveyard"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    archived_at: Mapped[datetime] = mapped_column(default=utcnow)


class PriorityChange(Base):
    """Urgency changes, including forced admissions past a tier's cap."""

    __tablename__ = "priority_changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True
    )
    # NULL when the record documents a forced admission at creation
    from_priority: Mapped[str | None] = mapped_column(String(2), nullable=True)
    to_priority: Mapped[str] = mapped_column(String(2), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    forced: Mapped[bool] = mapped_column(Boolean, default=False)
    changed_at: Mapped[datetime] = mapped_column(default=utcnow)


# =============================================================================
# GLOBAL TABLES
# =============================================================================


class Guardrail(Base):
    """System-wide configurable settings."""

    __tablename__ = "guardrails"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)
