"""Pending reality-check queue: surfaces exactly one escalation prompt at a time."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any

from .errors import PreconditionFailedError
from .models import Decision, Priority, Stage, Task, utcnow
from .reality_check import current_stage, is_awaiting_decision, parse_decision

logger = logging.getLogger(__name__)

Resolver = Callable[[str, Decision, str | None], Awaitable[Any]]


class PendingEscalationQueue:
    """Ordered queue of task ids awaiting a decision, plus an explicit head.

    The queue changes only when ``sync`` is fed a fresh task snapshot (after
    a sweep or an initial load) or when a submitted decision completes.
    """

    def __init__(self) -> None:
        self._order: list[str] = []
        self._tasks: dict[str, Task] = {}
        self._active_id: str | None = None
        self._in_flight = False

    def __len__(self) -> int:
        return len(self._order)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._order)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def active(self) -> Task | None:
        if self._active_id is None:
            return None
        return self._tasks.get(self._active_id)

    def sync(self, tasks: Iterable[Task], now: datetime | None = None) -> Task | None:
        """Recompute eligibility from a task snapshot.

        Ids already queued keep their position; newly eligible ids are
        appended in snapshot order.
        """
        now = now or utcnow()
        snapshot = list(tasks)
        eligible = {t.id: t for t in snapshot if is_awaiting_decision(t, now)}

        if self._in_flight and self._active_id is not None and self._active_id not in eligible:
            # The prompt under decision stays put until the request settles.
            eligible[self._active_id] = self._tasks[self._active_id]

        order = [task_id for task_id in self._order if task_id in eligible]
        for task in snapshot:
            if task.id in eligible and task.id not in order:
                order.append(task.id)

        self._order = order
        self._tasks = {task_id: eligible[task_id] for task_id in order}
        if not self._in_flight:
            self._advance()
        return self.active

    def _advance(self) -> None:
        if self._active_id in self._tasks:
            return
        self._active_id = self._order[0] if self._order else None

    def available_decisions(self) -> list[Decision]:
        task = self.active
        if task is None:
            return []
        decisions = [Decision.KEEP]
        if task.urgency != Priority.P4:
            decisions.append(Decision.DOWNGRADE)
        decisions.extend([Decision.SOMEDAY, Decision.ARCHIVE])
        return decisions

    def can_dismiss(self) -> bool:
        task = self.active
        return task is not None and current_stage(task) == Stage.WARNING

    async def submit(
        self,
        decision: Decision | str,
        resolver: Resolver,
        notes: str | None = None,
    ) -> Any:
        """Send the active prompt's decision through ``resolver``.

        On success the task leaves the queue and the next head becomes active.
        On failure the prompt stays active and the error propagates.
        """
        task = self.active
        if task is None:
            raise PreconditionFailedError("No reality check is pending")
        if self._in_flight:
            raise PreconditionFailedError("A decision is already being submitted")
        decision = parse_decision(decision)

        self._in_flight = True
        try:
            result = await resolver(task.id, decision, notes)
        except Exception:
            logger.warning("Decision %s for task %s failed", decision.value, task.id)
            raise
        finally:
            self._in_flight = False

        self._order = [task_id for task_id in self._order if task_id != task.id]
        self._tasks.pop(task.id, None)
        self._active_id = None
        self._advance()
        return result

    async def dismiss(self, resolver: Resolver) -> Any:
        """Lightweight close of a warning prompt; recorded as a keep."""
        if not self.can_dismiss():
            raise PreconditionFailedError("Only warning-stage reality checks can be dismissed")
        return await self.submit(Decision.KEEP, resolver)
