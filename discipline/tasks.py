"""
Task operations shared by the HTTP API and the CLI.

Each operation works inside the caller's session; the caller's
``db.get_session()`` block commits the task row and its audit rows together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .capacity import (
    DEFAULT_TABLE,
    PRIORITY_LABELS,
    CapacityTable,
    check_admission,
    check_batch_admission,
    describe_slot,
    parse_priority,
    require_admission,
)
from .errors import NotFoundError, PreconditionFailedError, ValidationError
from .models import Graveyard, Priority, PriorityChange, Stage, Task, TaskStatus, utcnow
from .reality_check import is_awaiting_decision, resolve
from .rollover import local_today
from .schemas import TaskCreate, TaskPatch

logger = logging.getLogger(__name__)

MANUAL_ARCHIVE_REASON = "Manual archive"
USAGE_LIST_LIMIT = 25


@dataclass
class PriorityUsage:
    priority: Priority
    allowed: bool
    current: int
    limit: int | None
    tasks_at_priority: list[Task]


@dataclass
class PrioritySlot:
    priority: Priority
    label: str
    current: int
    limit: int | None
    allowed: bool
    description: str


def _clean_urls(urls: list[str] | None) -> list[str] | None:
    if urls is None:
        return None
    return [u.strip() for u in urls if isinstance(u, str) and u.strip()]


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_title(title: str | None) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Task title is required")
    return title


def _park(task: Task) -> None:
    task.someday = True
    task.status = TaskStatus.WAITING.value
    task.due_date = None


def _parse_status(value: str) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError("Invalid status value") from None


def _set_status(session: AsyncSession, task: Task, status: TaskStatus, now: datetime) -> None:
    """Move ``task`` to ``status``, keeping the timestamps and archive trail in step."""
    was_archived = task.status == TaskStatus.ARCHIVED
    task.status = status.value
    task.completed_at = now if status == TaskStatus.COMPLETED else None
    if status == TaskStatus.ARCHIVED and not was_archived:
        session.add(Graveyard(task_id=task.id, reason=MANUAL_ARCHIVE_REASON, archived_at=now))
    elif (
        was_archived
        and status != TaskStatus.ARCHIVED
        and task.reality_check_stage == Stage.AUTO_ARCHIVE
    ):
        # Auto-archive only describes archived tasks; a revived task starts over.
        task.reality_check_stage = Stage.NONE.value
        task.reality_check_due_at = None


async def _require_reopen_admission(
    session: AsyncSession, task: Task, force: bool, table: CapacityTable
) -> None:
    current = await db.count_open_at_priority(session, task.urgency, exclude_ids=[task.id])
    require_admission(check_admission(task.urgency, current, force, table))


async def get_task(session: AsyncSession, task_id: str) -> Task:
    task = await db.get_task_by_id(session, task_id)
    if task is None:
        raise NotFoundError(task_id)
    return task


async def create_task(
    session: AsyncSession,
    data: TaskCreate,
    *,
    table: CapacityTable = DEFAULT_TABLE,
    now: datetime | None = None,
) -> Task:
    """Create a task after the capacity check for its priority."""
    now = now or utcnow()
    title = _require_title(data.title)
    priority = parse_priority(data.urgency) if data.urgency is not None else Priority.P3

    admission = None
    if not data.someday:
        current = await db.count_open_at_priority(session, priority.value)
        admission = require_admission(check_admission(priority, current, data.force, table))

    task = Task(
        title=title,
        description=data.description,
        urgency=priority.value,
        status=TaskStatus.OPEN.value,
        due_date=data.due_date or local_today(now),
        notes=data.notes,
        context=data.context,
        project_id=_clean_optional(data.project_id),
        urls=_clean_urls(data.urls),
        tags=data.tags,
        someday=False,
        follow_up_item=data.follow_up_item,
        rollover_count=0,
        reschedule_count=0,
        reality_check_stage="none",
        created_at=now,
        updated_at=now,
    )
    if data.someday:
        _park(task)
    session.add(task)
    await session.flush()

    if admission is not None and admission.forced:
        session.add(
            PriorityChange(
                task_id=task.id,
                from_priority=None,
                to_priority=priority.value,
                reason="Forced admission at creation",
                forced=True,
                changed_at=now,
            )
        )
    logger.info("Created task %s at %s", task.id, priority.value)
    return task


async def update_task(
    session: AsyncSession,
    task_id: str,
    patch: TaskPatch,
    *,
    table: CapacityTable = DEFAULT_TABLE,
    now: datetime | None = None,
) -> Task:
    """Apply a partial update. Only fields present in the request change.

    Someday tasks stay waiting with no due date: a patch that parks the task
    cannot also schedule it, and a patch that schedules or reopens a parked
    task takes it out of Someday. A task that ends up open again goes
    through the capacity check for its priority.
    """
    now = now or utcnow()
    task = await get_task(session, task_id)
    fields = patch.model_fields_set

    old_priority = Priority(task.urgency)
    new_priority = old_priority
    if "urgency" in fields and patch.urgency is not None:
        new_priority = parse_priority(patch.urgency)

    old_status = TaskStatus(task.status)
    new_status = old_status
    if "status" in fields and patch.status is not None:
        new_status = _parse_status(patch.status)
    new_due = patch.due_date if "due_date" in fields else task.due_date

    park = "someday" in fields and patch.someday is True
    unpark = bool(task.someday) and not park and (
        ("someday" in fields and patch.someday is False)
        or ("status" in fields and new_status != TaskStatus.WAITING)
        or ("due_date" in fields and patch.due_date is not None)
    )
    if park:
        if "due_date" in fields and patch.due_date is not None:
            raise ValidationError("Someday tasks cannot have a due date")
        if "status" in fields and new_status != TaskStatus.WAITING:
            raise ValidationError("Someday tasks must stay waiting")
        new_status = TaskStatus.WAITING
        new_due = None
    elif unpark:
        if "status" not in fields:
            new_status = TaskStatus.OPEN
        if new_status == TaskStatus.OPEN and new_due is None:
            new_due = local_today(now)

    reopening = new_status == TaskStatus.OPEN and old_status != TaskStatus.OPEN
    admission = None
    if new_priority != old_priority or reopening:
        current = await db.count_open_at_priority(session, new_priority.value, exclude_ids=[task.id])
        admission = require_admission(check_admission(new_priority, current, patch.force, table))

    if "title" in fields:
        task.title = _require_title(patch.title)
    for name in ("description", "notes", "context", "tags", "sort_order", "follow_up_item"):
        if name in fields:
            setattr(task, name, getattr(patch, name))
    if "project_id" in fields:
        task.project_id = _clean_optional(patch.project_id)
    if "urls" in fields:
        task.urls = _clean_urls(patch.urls)

    if "status" in fields or new_status != old_status:
        _set_status(session, task, new_status, now)
    task.due_date = new_due
    if park:
        task.someday = True
    elif unpark:
        task.someday = False

    if new_priority != old_priority:
        task.urgency = new_priority.value
        session.add(
            PriorityChange(
                task_id=task.id,
                from_priority=old_priority.value,
                to_priority=new_priority.value,
                reason=patch.priority_reason,
                forced=bool(admission and admission.forced),
                changed_at=now,
            )
        )

    task.updated_at = now
    await session.flush()
    return task


async def change_priority_batch(
    session: AsyncSession,
    task_ids: list[str],
    priority: Priority | str,
    *,
    force: bool = False,
    reason: str | None = None,
    table: CapacityTable = DEFAULT_TABLE,
    now: datetime | None = None,
) -> list[Task]:
    """Move several tasks to one priority under a single capacity check."""
    now = now or utcnow()
    priority = parse_priority(priority)
    ids = list(dict.fromkeys(task_ids))
    if not ids:
        raise ValidationError("No tasks selected")

    tasks = await db.get_tasks_by_ids(session, ids)
    found = {t.id for t in tasks}
    for task_id in ids:
        if task_id not in found:
            raise NotFoundError(task_id)

    existing = await db.count_open_at_priority(session, priority.value, exclude_ids=ids)
    admission = require_admission(
        check_batch_admission(priority, existing, len(ids), force, table)
    )

    by_id = {t.id: t for t in tasks}
    ordered = [by_id[task_id] for task_id in ids]
    for task in ordered:
        if task.urgency == priority.value:
            continue
        session.add(
            PriorityChange(
                task_id=task.id,
                from_priority=task.urgency,
                to_priority=priority.value,
                reason=reason,
                forced=admission.forced,
                changed_at=now,
            )
        )
        task.urgency = priority.value
        task.updated_at = now

    await session.flush()
    return ordered


async def reschedule_task(
    session: AsyncSession,
    task_id: str,
    new_date: date,
    *,
    force: bool = False,
    table: CapacityTable = DEFAULT_TABLE,
    now: datetime | None = None,
) -> Task:
    """Manual move to ``new_date``; counts against the reschedule tally.

    Archived tasks cannot be rescheduled. A completed or parked task is
    reopened, which needs a free slot at its priority unless forced.
    """
    now = now or utcnow()
    task = await get_task(session, task_id)
    if task.status == TaskStatus.ARCHIVED:
        raise PreconditionFailedError("Archived tasks cannot be rescheduled")
    if task.status != TaskStatus.OPEN:
        await _require_reopen_admission(session, task, force, table)

    task.due_date = new_date
    task.reschedule_count = (task.reschedule_count or 0) + 1
    task.last_rescheduled_at = now
    task.status = TaskStatus.OPEN.value
    task.completed_at = None
    task.someday = False
    task.updated_at = now
    await session.flush()
    return task


async def complete_task(
    session: AsyncSession, task_id: str, *, now: datetime | None = None
) -> Task:
    now = now or utcnow()
    task = await get_task(session, task_id)
    task.status = TaskStatus.COMPLETED.value
    task.completed_at = now
    task.updated_at = now
    await session.flush()
    return task


async def archive_task(
    session: AsyncSession,
    task_id: str,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> Task:
    """Soft-delete a task. Archiving twice writes only one graveyard row."""
    now = now or utcnow()
    task = await get_task(session, task_id)
    if task.status != TaskStatus.ARCHIVED:
        session.add(
            Graveyard(
                task_id=task.id,
                reason=_clean_optional(reason) or MANUAL_ARCHIVE_REASON,
                archived_at=now,
            )
        )
        logger.info("Archived task %s", task.id)
    task.status = TaskStatus.ARCHIVED.value
    task.updated_at = now
    await session.flush()
    return task


async def apply_decision(
    session: AsyncSession,
    task_id: str,
    decision: str,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> tuple[Task, str]:
    """Resolve a pending reality check and persist the outcome."""
    task = await get_task(session, task_id)
    resolution = resolve(task, decision, notes, now=now or utcnow())
    session.add_all(resolution.records)
    await session.flush()
    logger.info(
        "Reality check on %s at %s resolved: %s",
        task.id,
        resolution.stage.value,
        resolution.decision.value,
    )
    return task, resolution.message


async def priority_usage(
    session: AsyncSession,
    priority: Priority | str,
    *,
    table: CapacityTable = DEFAULT_TABLE,
) -> PriorityUsage:
    priority = parse_priority(priority)
    current = await db.count_open_at_priority(session, priority.value)
    tasks = await db.list_open_at_priority(session, priority.value, limit=USAGE_LIST_LIMIT)
    admission = check_admission(priority, current, table=table)
    return PriorityUsage(
        priority=priority,
        allowed=admission.allowed,
        current=current,
        limit=admission.limit,
        tasks_at_priority=tasks,
    )


async def usage_summary(
    session: AsyncSession, *, table: CapacityTable = DEFAULT_TABLE
) -> list[PrioritySlot]:
    slots: list[PrioritySlot] = []
    for priority in Priority:
        current = await db.count_open_at_priority(session, priority.value)
        admission = check_admission(priority, current, table=table)
        slots.append(
            PrioritySlot(
                priority=priority,
                label=PRIORITY_LABELS[priority],
                current=current,
                limit=admission.limit,
                allowed=admission.allowed,
                description=describe_slot(priority, current, table),
            )
        )
    return slots


async def pending_reality_checks(
    session: AsyncSession, *, now: datetime | None = None
) -> list[Task]:
    now = now or utcnow()
    return [t for t in await db.list_live_tasks(session) if is_awaiting_decision(t, now)]
