"""Async database connection and queries for the task discipline engine."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import date
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .errors import (
    SchemaNotInitializedError,
    StoreFailureError,
    is_schema_missing_error,
    schema_not_initialized_message,
)
from .models import (
    Base,
    Graveyard,
    PriorityChange,
    RealityCheckEvent,
    RolloverHistory,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def configure(url: str | None = None, **engine_kwargs: Any) -> AsyncEngine:
    """(Re)create the engine and session factory."""
    global engine, async_session_factory

    engine_kwargs.setdefault("echo", False)
    engine_kwargs.setdefault("pool_pre_ping", True)
    engine = create_async_engine(url or settings.async_database_url, **engine_kwargs)
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine


def get_engine() -> AsyncEngine:
    if engine is None:
        return configure()
    return engine


async def dispose() -> None:
    global engine, async_session_factory
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session_factory = None


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    get_engine()
    if async_session_factory is None:
        raise StoreFailureError("Database session factory is not configured")
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError):
                if is_schema_missing_error(exc):
                    raise SchemaNotInitializedError(
                        schema_not_initialized_message(exc)
                    ) from exc
                logger.exception("Database operation failed")
                raise StoreFailureError("Database operation failed") from exc
            raise


# =============================================================================
# Task Queries
# =============================================================================


async def get_task_by_id(session: AsyncSession, task_id: str) -> Task | None:
    """Get a task by its ID."""
    result = await session.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def get_tasks_by_ids(session: AsyncSession, task_ids: Iterable[str]) -> list[Task]:
    ids = list(task_ids)
    if not ids:
        return []
    result = await session.execute(select(Task).where(Task.id.in_(ids)))
    return list(result.scalars().all())


async def list_tasks(
    session: AsyncSession,
    *,
    status: str | None = None,
    include_archived: bool = False,
    due_before: date | None = None,
    due_after: date | None = None,
) -> list[Task]:
    """List tasks ordered by due date, newest first within a day."""
    query = select(Task).order_by(Task.due_date.asc().nulls_last(), Task.created_at.desc())
    if status:
        query = query.where(Task.status == status)
    if not include_archived:
        query = query.where(Task.status != TaskStatus.ARCHIVED.value)
    if due_before:
        query = query.where(Task.due_date <= due_before)
    if due_after:
        query = query.where(Task.due_date >= due_after)

    result = await session.execute(query)
    return list(result.scalars().all())


async def list_live_tasks(session: AsyncSession) -> list[Task]:
    """Non-archived tasks in insertion order."""
    result = await session.execute(
        select(Task)
        .where(Task.status != TaskStatus.ARCHIVED.value)
        .order_by(Task.created_at, Task.id)
    )
    return list(result.scalars().all())


async def count_open_at_priority(
    session: AsyncSession,
    priority: str,
    *,
    exclude_ids: Iterable[str] = (),
) -> int:
    query = select(func.count(Task.id)).where(
        Task.status == TaskStatus.OPEN.value, Task.urgency == priority
    )
    excluded = list(exclude_ids)
    if excluded:
        query = query.where(Task.id.not_in(excluded))
    result = await session.execute(query)
    return int(result.scalar_one() or 0)


async def list_open_at_priority(
    session: AsyncSession, priority: str, *, limit: int = 25
) -> list[Task]:
    result = await session.execute(
        select(Task)
        .where(Task.status == TaskStatus.OPEN.value, Task.urgency == priority)
        .order_by(Task.due_date.asc().nulls_last(), Task.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def select_overdue(session: AsyncSession, today: date) -> list[Task]:
    """Open, scheduled, non-follow-up tasks due before ``today``."""
    result = await session.execute(
        select(Task)
        .where(
            Task.status == TaskStatus.OPEN.value,
            Task.someday.is_(False),
            Task.follow_up_item.is_(False),
            Task.due_date.is_not(None),
            Task.due_date < today,
        )
        .order_by(Task.due_date, Task.created_at)
    )
    return list(result.scalars().all())


# =============================================================================
# Audit Trail Readers
# =============================================================================


async def get_rollover_history(session: AsyncSession, task_id: str) -> list[RolloverHistory]:
    result = await session.execute(
        select(RolloverHistory)
        .where(RolloverHistory.task_id == task_id)
        .order_by(RolloverHistory.created_at)
    )
    return list(result.scalars().all())


async def get_reality_check_events(session: AsyncSession, task_id: str) -> list[RealityCheckEvent]:
    result = await session.execute(
        select(RealityCheckEvent)
        .where(RealityCheckEvent.task_id == task_id)
        .order_by(RealityCheckEvent.decision_at)
    )
    return list(result.scalars().all())


async def get_priority_changes(session: AsyncSession, task_id: str) -> list[PriorityChange]:
    result = await session.execute(
        select(PriorityChange)
        .where(PriorityChange.task_id == task_id)
        .order_by(PriorityChange.changed_at)
    )
    return list(result.scalars().all())


async def list_graveyard(session: AsyncSession, *, task_id: str | None = None) -> list[Graveyard]:
    query = select(Graveyard).order_by(Graveyard.archived_at.desc())
    if task_id:
        query = query.where(Graveyard.task_id == task_id)
    result = await session.execute(query)
    return list(result.scalars().all())
