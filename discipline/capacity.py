"""
Priority cap enforcement: how many open tasks each priority tier may hold.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from sqlalchemy import select

from .errors import CapacityExceededError, ValidationError
from .models import Guardrail, Priority, TaskStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from .models import Task

logger = logging.getLogger(__name__)

DEFAULT_LIMITS: dict[Priority, int | None] = {
    Priority.P1: 3,
    Priority.P2: 5,
    Priority.P3: 10,
    Priority.P4: None,
}

PRIORITY_LABELS: dict[Priority, str] = {
    Priority.P1: "Critical",
    Priority.P2: "High",
    Priority.P3: "Medium",
    Priority.P4: "Low",
}

GUARDRAIL_KEY = "priority_caps"

_UNBOUNDED_VALUES = {"", "none", "null", "unbounded"}


@dataclass(frozen=True)
class CapacityTable:
    """Immutable priority → open-task limit table (None means unbounded)."""

    limits: Mapping[Priority, int | None] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_LIMITS))
    )

    def __post_init__(self) -> None:
        if not isinstance(self.limits, MappingProxyType):
            object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))

    def limit_for(self, priority: Priority | str) -> int | None:
        return self.limits.get(Priority(priority))


DEFAULT_TABLE = CapacityTable()


@dataclass(frozen=True)
class Admission:
    """Outcome of an admission check against a snapshot count."""

    priority: Priority
    limit: int | None
    current: int
    allowed: bool
    forced: bool = False


def parse_priority(value: str | None) -> Priority:
    try:
        return Priority(str(value).strip().upper())
    except ValueError:
        raise ValidationError("Invalid priority value") from None


def check_admission(
    priority: Priority | str,
    current: int,
    force: bool = False,
    table: CapacityTable = DEFAULT_TABLE,
) -> Admission:
    """Decide whether one more open task fits at ``priority``.

    ``current`` is the number of open tasks at that priority, excluding the
    task being edited. A forced admission past the limit is allowed but
    flagged so callers can record the override.
    """
    priority = Priority(priority)
    limit = table.limit_for(priority)
    if limit is None or current < limit:
        return Admission(priority=priority, limit=limit, current=current, allowed=True)
    return Admission(
        priority=priority, limit=limit, current=current, allowed=force, forced=force
    )


def check_batch_admission(
    priority: Priority | str,
    existing_open: int,
    batch_size: int,
    force: bool = False,
    table: CapacityTable = DEFAULT_TABLE,
) -> Admission:
    """Admission for a batch of tasks moving to the same priority.

    ``existing_open`` must exclude the batch members themselves, so a batch
    that leaves tasks at their current priority never trips the limit.
    """
    priority = Priority(priority)
    limit = table.limit_for(priority)
    if limit is None or existing_open + batch_size <= limit:
        return Admission(priority=priority, limit=limit, current=existing_open, allowed=True)
    return Admission(
        priority=priority, limit=limit, current=existing_open, allowed=force, forced=force
    )


def require_admission(admission: Admission) -> Admission:
    """Raise CapacityExceededError unless the admission was allowed."""
    if not admission.allowed:
        if admission.limit is None:
            raise RuntimeError(f"Unbounded priority {admission.priority.value} refused an admission")
        raise CapacityExceededError(admission.priority.value, admission.limit, admission.current)
    if admission.forced:
        logger.warning(
            "Forced admission at %s past limit %s (current %s)",
            admission.priority.value,
            admission.limit,
            admission.current,
        )
    return admission


def usage_by_priority(tasks: Iterable[Task]) -> dict[Priority, int]:
    """Count open tasks per priority."""
    usage = {p: 0 for p in Priority}
    for task in tasks:
        if task.status == TaskStatus.OPEN:
            usage[Priority(task.urgency)] += 1
    return usage


def describe_slot(priority: Priority | str, used: int, table: CapacityTable = DEFAULT_TABLE) -> str:
    limit = table.limit_for(priority)
    if limit is None:
        return f"{used} active"
    return f"{used} / {limit} used"


# =============================================================================
# Table resolution: env > db > defaults
# =============================================================================


def get_env_key(priority: Priority | str) -> str:
    return f"DISCIPLINE_{Priority(priority).value}_LIMIT"


def _parse_limit(raw: object) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _UNBOUNDED_VALUES:
            return None
        try:
            raw = int(text)
        except ValueError:
            raise ValidationError(f"Invalid capacity limit: {text!r}") from None
    if not isinstance(raw, int) or isinstance(raw, bool) or raw < 0:
        raise ValidationError(f"Invalid capacity limit: {raw!r}")
    return raw


def get_limit_from_env(priority: Priority | str) -> tuple[bool, int | None]:
    raw = os.getenv(get_env_key(priority))
    if raw is None:
        return False, None
    return True, _parse_limit(raw)


async def get_db_caps(session: AsyncSession) -> dict[Priority, int | None]:
    result = await session.execute(select(Guardrail).where(Guardrail.key == GUARDRAIL_KEY))
    guardrail = result.scalar_one_or_none()

    caps: dict[Priority, int | None] = {}
    if guardrail and isinstance(guardrail.value, dict):
        for key, value in guardrail.value.items():
            if key in Priority.__members__:
                caps[Priority(key)] = _parse_limit(value)
    return caps


async def resolve_capacity_with_source(
    session: AsyncSession | None = None,
) -> dict[Priority, tuple[int | None, str]]:
    db_caps = await get_db_caps(session) if session is not None else {}

    resolved: dict[Priority, tuple[int | None, str]] = {}
    for priority in Priority:
        from_env, env_limit = get_limit_from_env(priority)
        if from_env:
            resolved[priority] = (env_limit, "env")
        elif priority in db_caps:
            resolved[priority] = (db_caps[priority], "db")
        else:
            resolved[priority] = (DEFAULT_LIMITS[priority], "default")
    return resolved


async def resolve_capacity_table(session: AsyncSession | None = None) -> CapacityTable:
    resolved = await resolve_capacity_with_source(session)
    return CapacityTable({p: limit for p, (limit, _) in resolved.items()})


async def update_db_cap(
    session: AsyncSession, priority: Priority | str, limit: int | str | None
) -> None:
    priority = Priority(priority)
    limit = _parse_limit(limit)
    result = await session.execute(select(Guardrail).where(Guardrail.key == GUARDRAIL_KEY))
    guardrail = result.scalar_one_or_none()

    if guardrail:
        new_value = dict(guardrail.value) if isinstance(guardrail.value, dict) else {}
        new_value[priority.value] = limit
        guardrail.value = new_value
    else:
        guardrail = Guardrail(
            key=GUARDRAIL_KEY,
            value={priority.value: limit},
            description="Open-task limit per priority. Priority: ENV > DB > defaults.",
        )
        session.add(guardrail)

    await session.flush()


async def delete_db_cap(session: AsyncSession, priority: Priority | str) -> bool:
    priority = Priority(priority)
    result = await session.execute(select(Guardrail).where(Guardrail.key == GUARDRAIL_KEY))
    guardrail = result.scalar_one_or_none()

    if guardrail and isinstance(guardrail.value, dict) and priority.value in guardrail.value:
        new_value = dict(guardrail.value)
        del new_value[priority.value]
        guardrail.value = new_value
        await session.flush()
        return True
    return False
