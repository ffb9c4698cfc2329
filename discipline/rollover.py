"""
Daily rollover sweep: advance overdue open tasks to today and escalate
chronic slippers through the reality-check stages.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .config import settings
from .errors import StoreFailureError
from .models import (
    Base,
    Decision,
    Graveyard,
    RealityCheckEvent,
    RolloverHistory,
    Stage,
    Task,
    TaskStatus,
    utcnow,
)
from .reality_check import AUTO_ARCHIVE_REASON, should_trigger, stage_for_count

logger = logging.getLogger(__name__)


@dataclass
class RolloverOutcome:
    """One task's advance, with the audit rows that belong to it."""

    task: Task
    archived: bool
    records: list[Base] = field(default_factory=list)


@dataclass
class SweepResult:
    rolled_over: int = 0
    auto_archived: int = 0
    tasks: list[Task] = field(default_factory=list)


def local_today(now: datetime, tz_name: str | None = None) -> date:
    return now.astimezone(ZoneInfo(tz_name or settings.timezone)).date()


def advance_task(task: Task, *, now: datetime, today: date) -> RolloverOutcome:
    """Roll one overdue task forward to ``today``. Mutates ``task``."""
    from_date = task.due_date
    new_count = (task.rollover_count or 0) + 1
    next_stage = stage_for_count(new_count)
    records: list[Base] = []
    archived = False

    if next_stage == Stage.AUTO_ARCHIVE:
        archived = True
        task.status = TaskStatus.ARCHIVED.value
        task.reality_check_stage = Stage.AUTO_ARCHIVE.value
        task.reality_check_due_at = None
        records.append(Graveyard(task_id=task.id, reason=AUTO_ARCHIVE_REASON, archived_at=now))
        records.append(
            RealityCheckEvent(
                task_id=task.id,
                stage=Stage.AUTO_ARCHIVE.value,
                decision=Decision.AUTO_ARCHIVE.value,
                decision_at=now,
            )
        )
    elif next_stage == Stage.NONE:
        task.reality_check_stage = Stage.NONE.value
        task.reality_check_due_at = None
    else:
        # Leave an existing due timestamp alone mid-review so the stage is
        # not re-raised on every sweep.
        if should_trigger(task, next_stage, now):
            task.reality_check_due_at = now
        task.reality_check_stage = next_stage.value

    task.due_date = today
    task.rollover_count = new_count
    task.last_rolled_over_at = now
    task.updated_at = now

    records.append(
        RolloverHistory(
            task_id=task.id,
            from_date=from_date,
            to_date=today,
            priority=task.urgency,
            automatic=True,
            created_at=now,
        )
    )
    return RolloverOutcome(task=task, archived=archived, records=records)


async def run_sweep(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    today: date | None = None,
) -> SweepResult:
    """Roll every overdue task forward, committing one task at a time.

    A failing task rolls back only its own unit and aborts the sweep; tasks
    committed earlier in the run stay committed. Re-running the same day
    selects nothing new because advanced tasks are due today.
    """
    now = now or utcnow()
    today = today or local_today(now)

    tasks = await db.select_overdue(session, today)
    result = SweepResult()
    logger.debug("Rollover sweep for %s: %d overdue tasks", today.isoformat(), len(tasks))

    for task in tasks:
        task_id = task.id
        try:
            outcome = advance_task(task, now=now, today=today)
            session.add_all(outcome.records)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.exception("Rollover failed for task %s", task_id)
            raise StoreFailureError(
                f"Rollover aborted after {result.rolled_over} tasks: failed to roll over task {task_id}"
            ) from exc

        logger.debug(
            "Rolled task %s to %s (count=%d, stage=%s)",
            task_id,
            today.isoformat(),
            task.rollover_count,
            task.reality_check_stage,
        )
        result.rolled_over += 1
        if outcome.archived:
            result.auto_archived += 1
        result.tasks.append(task)

    logger.info(
        "Rollover sweep complete: %d rolled over, %d auto-archived",
        result.rolled_over,
        result.auto_archived,
    )
    return result
