from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from discipline import db
from discipline.errors import StoreFailureError
from discipline.models import Graveyard, RealityCheckEvent, RolloverHistory
from discipline.rollover import advance_task, local_today, run_sweep

from .helpers import NOW, TODAY, YESTERDAY, add_task, make_task


def test_advance_crosses_warning_threshold() -> None:
    task = make_task(rollover_count=2)
    outcome = advance_task(task, now=NOW, today=TODAY)

    assert task.rollover_count == 3
    assert task.reality_check_stage == "warning"
    assert task.reality_check_due_at == NOW
    assert task.due_date == TODAY
    assert task.last_rolled_over_at == NOW
    assert not outcome.archived

    (history,) = outcome.records
    assert isinstance(history, RolloverHistory)
    assert (history.from_date, history.to_date, history.priority) == (YESTERDAY, TODAY, "P2")
    assert history.automatic is True


def test_advance_below_threshold_clears_stage() -> None:
    task = make_task(rollover_count=0)
    advance_task(task, now=NOW, today=TODAY)
    assert task.rollover_count == 1
    assert task.reality_check_stage == "none"
    assert task.reality_check_due_at is None


def test_advance_keeps_due_timestamp_mid_review() -> None:
    later = NOW + timedelta(hours=20)
    task = make_task(rollover_count=3, reality_check_stage="warning", reality_check_due_at=later)
    advance_task(task, now=NOW, today=TODAY)
    assert task.reality_check_stage == "warning"
    assert task.reality_check_due_at == later


def test_advance_resurfaces_lapsed_stage() -> None:
    task = make_task(
        rollover_count=3,
        reality_check_stage="warning",
        reality_check_due_at=NOW - timedelta(days=2),
    )
    advance_task(task, now=NOW, today=TODAY)
    assert task.reality_check_due_at == NOW


def test_advance_new_stage_is_immediately_due() -> None:
    later = NOW + timedelta(hours=20)
    task = make_task(rollover_count=4, reality_check_stage="warning", reality_check_due_at=later)
    advance_task(task, now=NOW, today=TODAY)
    assert task.reality_check_stage == "alert"
    assert task.reality_check_due_at == NOW


def test_advance_tenth_rollover_auto_archives() -> None:
    task = make_task(rollover_count=9, reality_check_stage="intervention", reality_check_due_at=NOW)
    outcome = advance_task(task, now=NOW, today=TODAY)

    assert outcome.archived
    assert task.status == "archived"
    assert task.reality_check_stage == "auto_archive"
    assert task.reality_check_due_at is None
    kinds = {type(r) for r in outcome.records}
    assert kinds == {Graveyard, RealityCheckEvent, RolloverHistory}
    event = next(r for r in outcome.records if isinstance(r, RealityCheckEvent))
    assert event.decision == "auto_archive"


def test_local_today_uses_timezone() -> None:
    late_utc = NOW.replace(hour=23)
    assert local_today(late_utc, "UTC") == TODAY
    assert local_today(late_utc, "Asia/Tokyo") == TODAY + timedelta(days=1)


@pytest.mark.asyncio
async def test_sweep_selects_only_overdue_open_tasks(session) -> None:
    overdue = await add_task(session, title="overdue")
    await add_task(session, title="due today", due_date=TODAY)
    await add_task(session, title="done", status="completed")
    await add_task(session, title="parked", someday=True, status="waiting", due_date=None)
    await add_task(session, title="follow up", follow_up_item=True)

    result = await run_sweep(session, now=NOW, today=TODAY)

    assert result.rolled_over == 1
    assert result.auto_archived == 0
    assert [t.id for t in result.tasks] == [overdue.id]
    history = await db.get_rollover_history(session, overdue.id)
    assert len(history) == 1


@pytest.mark.asyncio
async def test_sweep_twice_same_day_is_idempotent(session) -> None:
    task = await add_task(session, rollover_count=1)

    first = await run_sweep(session, now=NOW, today=TODAY)
    second = await run_sweep(session, now=NOW + timedelta(hours=1), today=TODAY)

    assert first.rolled_over == 1
    assert second.rolled_over == 0
    assert task.rollover_count == 2
    assert len(await db.get_rollover_history(session, task.id)) == 1


@pytest.mark.asyncio
async def test_sweep_auto_archives_chronic_task(session) -> None:
    task = await add_task(session, rollover_count=9, urgency="P2")

    result = await run_sweep(session, now=NOW, today=TODAY)

    assert result.rolled_over == 1
    assert result.auto_archived == 1
    assert task.status == "archived"
    assert task.reality_check_stage == "auto_archive"
    graves = await db.list_graveyard(session, task_id=task.id)
    assert len(graves) == 1
    events = await db.get_reality_check_events(session, task.id)
    assert [e.decision for e in events] == ["auto_archive"]


@pytest.mark.asyncio
async def test_sweep_failure_keeps_committed_tasks(session, monkeypatch) -> None:
    first = await add_task(session, title="first", due_date=YESTERDAY - timedelta(days=1))
    second = await add_task(session, title="second")

    import discipline.rollover as rollover

    real_advance = rollover.advance_task

    def flaky(task, *, now, today):
        if task.id == second.id:
            raise OperationalError("UPDATE tasks", {}, Exception("disk I/O error"))
        return real_advance(task, now=now, today=today)

    monkeypatch.setattr(rollover, "advance_task", flaky)

    with pytest.raises(StoreFailureError) as exc_info:
        await run_sweep(session, now=NOW, today=TODAY)
    assert second.id in exc_info.value.message

    async with db.get_session() as fresh:
        stored_first = await db.get_task_by_id(fresh, first.id)
        stored_second = await db.get_task_by_id(fresh, second.id)
        assert stored_first.rollover_count == 1
        assert stored_first.due_date == TODAY
        assert stored_second.rollover_count == 0
        assert len(await db.get_rollover_history(fresh, second.id)) == 0


@pytest.mark.asyncio
async def test_sweep_unit_rolls_back_when_history_write_fails(session, monkeypatch) -> None:
    first = await add_task(session, title="first", due_date=YESTERDAY - timedelta(days=1))
    second = await add_task(session, title="second", rollover_count=2)

    import discipline.rollover as rollover

    real_advance = rollover.advance_task

    def broken_history(task, *, now, today):
        outcome = real_advance(task, now=now, today=today)
        if task.id == second.id:
            for record in outcome.records:
                if isinstance(record, RolloverHistory):
                    record.to_date = None
        return outcome

    monkeypatch.setattr(rollover, "advance_task", broken_history)

    with pytest.raises(StoreFailureError):
        await run_sweep(session, now=NOW, today=TODAY)

    async with db.get_session() as fresh:
        stored_first = await db.get_task_by_id(fresh, first.id)
        stored_second = await db.get_task_by_id(fresh, second.id)
        assert stored_first.rollover_count == 1
        assert len(await db.get_rollover_history(fresh, first.id)) == 1
        assert stored_second.rollover_count == 2
        assert stored_second.reality_check_stage == "none"
        assert stored_second.due_date == YESTERDAY
        assert await db.get_rollover_history(fresh, second.id) == []
        assert await db.get_reality_check_events(fresh, second.id) == []
