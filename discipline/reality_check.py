"""
Reality-check escalation: rollover count → stage, and the user decision
that resolves a pending stage.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .errors import PreconditionFailedError, ValidationError
from .models import (
    Base,
    Decision,
    Graveyard,
    Priority,
    PriorityChange,
    RealityCheckEvent,
    Stage,
    Task,
    TaskStatus,
    utcnow,
)

# Checked highest first; a count that skips a threshold still lands correctly.
REALITY_THRESHOLDS: tuple[tuple[int, Stage], ...] = (
    (10, Stage.AUTO_ARCHIVE),
    (7, Stage.INTERVENTION),
    (5, Stage.ALERT),
    (3, Stage.WARNING),
)

STAGE_ORDER: tuple[Stage, ...] = (
    Stage.NONE,
    Stage.WARNING,
    Stage.ALERT,
    Stage.INTERVENTION,
    Stage.AUTO_ARCHIVE,
)

USER_DECISIONS: frozenset[Decision] = frozenset(
    {Decision.KEEP, Decision.DOWNGRADE, Decision.SOMEDAY, Decision.ARCHIVE}
)

AWAITING_STAGES: frozenset[Stage] = frozenset({Stage.WARNING, Stage.ALERT, Stage.INTERVENTION})

KEEP_DELAY = timedelta(days=1)

ARCHIVE_REASON = "Archived via reality check"
AUTO_ARCHIVE_REASON = "Auto-archived after 10 rollovers"


def stage_for_count(rollover_count: int) -> Stage:
    for threshold, stage in REALITY_THRESHOLDS:
        if rollover_count >= threshold:
            return stage
    return Stage.NONE


def next_lower_priority(priority: Priority | str) -> Priority:
    priority = Priority(priority)
    if priority == Priority.P1:
        return Priority.P2
    if priority == Priority.P2:
        return Priority.P3
    return Priority.P4


def current_stage(task: Task) -> Stage:
    return Stage(task.reality_check_stage or Stage.NONE)


def should_trigger(task: Task, next_stage: Stage, now: datetime) -> bool:
    """True when ``next_stage`` should be (re)surfaced to the user right now."""
    if next_stage not in AWAITING_STAGES:
        return False
    if current_stage(task) != next_stage:
        return True
    if task.reality_check_due_at is None:
        return True
    return task.reality_check_due_at < now


def is_awaiting_decision(task: Task, now: datetime) -> bool:
    """Eligibility for the pending-escalation queue."""
    if current_stage(task) not in AWAITING_STAGES:
        return False
    return task.reality_check_due_at is None or task.reality_check_due_at <= now


def parse_decision(value: str | None) -> Decision:
    try:
        decision = Decision(str(value).strip().lower())
    except ValueError:
        raise ValidationError("Unsupported decision") from None
    if decision not in USER_DECISIONS:
        raise ValidationError("Unsupported decision")
    return decision


@dataclass
class Resolution:
    """Result of resolving a reality check; ``records`` are not yet persisted."""

    task: Task
    stage: Stage
    decision: Decision
    message: str
    records: list[Base] = field(default_factory=list)


def _clear(task: Task) -> None:
    task.reality_check_stage = Stage.NONE.value
    task.reality_check_due_at = None


def _keep(task: Task, now: datetime) -> tuple[str, list[Base]]:
    task.reality_check_due_at = now + KEEP_DELAY
    return "Task kept for review tomorrow", []


def _downgrade(task: Task, now: datetime) -> tuple[str, list[Base]]:
    old = Priority(task.urgency)
    new = next_lower_priority(old)
    task.urgency = new.value
    _clear(task)
    records: list[Base] = []
    if new != old:
        records.append(
            PriorityChange(
                task_id=task.id,
                from_priority=old.value,
                to_priority=new.value,
                reason="Reality check downgrade",
                forced=False,
                changed_at=now,
            )
        )
    return f"Priority downgraded to {new.value}", records


def _someday(task: Task, now: datetime) -> tuple[str, list[Base]]:
    task.someday = True
    task.status = TaskStatus.WAITING.value
    task.due_date = None
    _clear(task)
    return "Moved to Someday", []


def _archive(task: Task, now: datetime) -> tuple[str, list[Base]]:
    task.status = TaskStatus.ARCHIVED.value
    _clear(task)
    return "Task archived", [Graveyard(task_id=task.id, reason=ARCHIVE_REASON, archived_at=now)]


_RESOLVERS: dict[Decision, Callable[[Task, datetime], tuple[str, list[Base]]]] = {
    Decision.KEEP: _keep,
    Decision.DOWNGRADE: _downgrade,
    Decision.SOMEDAY: _someday,
    Decision.ARCHIVE: _archive,
}


def resolve(
    task: Task,
    decision: Decision | str,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> Resolution:
    """Apply a user decision to a task awaiting a reality check.

    Mutates ``task`` in place and returns the audit records to persist. Every
    branch records a RealityCheckEvent with the stage at decision time.
    """
    now = now or utcnow()
    decision = parse_decision(decision)
    stage = current_stage(task)
    if stage not in AWAITING_STAGES:
        raise PreconditionFailedError("Task does not require a reality check")

    message, records = _RESOLVERS[decision](task, now)
    task.updated_at = now
    records.append(
        RealityCheckEvent(
            task_id=task.id,
            stage=stage.value,
            decision=decision.value,
            decision_at=now,
            notes=notes,
        )
    )
    return Resolution(task=task, stage=stage, decision=decision, message=message, records=records)
