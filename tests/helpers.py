"""Task builders shared by the test modules."""

from datetime import UTC, date, datetime
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from discipline.models import Task

NOW = datetime(2026, 3, 10, 9, 30, tzinfo=UTC)
TODAY = date(2026, 3, 10)
YESTERDAY = date(2026, 3, 9)


def make_task(**overrides) -> Task:
    """Transient task with every column set, so pure code never sees None."""
    values = {
        "id": str(uuid4()),
        "title": "Write report",
        "urgency": "P2",
        "status": "open",
        "due_date": YESTERDAY,
        "someday": False,
        "follow_up_item": False,
        "rollover_count": 0,
        "reschedule_count": 0,
        "reality_check_stage": "none",
        "reality_check_due_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return Task(**values)


async def add_task(session: AsyncSession, **overrides) -> Task:
    task = make_task(**overrides)
    session.add(task)
    await session.commit()
    return task
