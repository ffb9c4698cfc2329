"""
Task discipline HTTP API.
"""

import logging
import secrets
from datetime import date

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import db, tasks
from .capacity import resolve_capacity_table
from .config import settings
from .errors import DisciplineError, UnauthorizedError
from .models import TaskStatus
from .rollover import run_sweep
from .schemas import (
    ArchiveRequest,
    BulkPriorityRequest,
    DecisionRequest,
    PrioritySlotOut,
    PriorityUsageOut,
    RescheduleRequest,
    SweepOut,
    TaskCreate,
    TaskEnvelope,
    TaskListOut,
    TaskOut,
    TaskPatch,
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Discipline API",
    description="Priority caps, daily rollover and reality checks",
    version="0.1.0",
)


@app.exception_handler(DisciplineError)
async def discipline_error_handler(request: Request, exc: DisciplineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"message": f"Invalid payload: {detail}"})


def require_cron_token(authorization: str | None) -> None:
    secret = settings.cron_secret
    token = (authorization or "").removeprefix("Bearer ").strip()
    if not secret or not token or not secrets.compare_digest(token, secret):
        raise UnauthorizedError()


def _envelope(task, message: str | None = None) -> TaskEnvelope:
    return TaskEnvelope(task=TaskOut.model_validate(task), message=message)


# ==== Priority caps ====


@app.get("/api/priority-check", response_model=PriorityUsageOut)
async def priority_check(priority: str | None = None) -> PriorityUsageOut:
    """Capacity usage for one priority, with the open tasks occupying it."""
    async with db.get_session() as session:
        table = await resolve_capacity_table(session)
        usage = await tasks.priority_usage(session, priority, table=table)
        return PriorityUsageOut(
            allowed=usage.allowed,
            current=usage.current,
            limit=usage.limit,
            tasks_at_priority=[TaskOut.model_validate(t) for t in usage.tasks_at_priority],
        )


@app.get("/api/priority-usage", response_model=list[PrioritySlotOut])
async def priority_usage_summary() -> list[PrioritySlotOut]:
    async with db.get_session() as session:
        table = await resolve_capacity_table(session)
        slots = await tasks.usage_summary(session, table=table)
        return [
            PrioritySlotOut(
                priority=s.priority.value,
                label=s.label,
                current=s.current,
                limit=s.limit,
                allowed=s.allowed,
                description=s.description,
            )
            for s in slots
        ]


# ==== Rollover & reality checks ====


@app.post("/api/rollover", response_model=SweepOut)
async def rollover(authorization: str | None = Header(default=None)) -> SweepOut:
    """Daily sweep trigger; requires the cron bearer token."""
    require_cron_token(authorization)
    async with db.get_session() as session:
        result = await run_sweep(session)
        return SweepOut(
            rolled_over=result.rolled_over,
            auto_archived=result.auto_archived,
            tasks=[TaskOut.model_validate(t) for t in result.tasks],
        )


@app.post("/api/reality-check/{task_id}/decision", response_model=TaskEnvelope)
async def reality_check_decision(task_id: str, body: DecisionRequest) -> TaskEnvelope:
    async with db.get_session() as session:
        task, message = await tasks.apply_decision(session, task_id, body.decision, body.notes)
        return _envelope(task, message)


@app.get("/api/reality-check/pending", response_model=TaskListOut)
async def reality_check_pending() -> TaskListOut:
    async with db.get_session() as session:
        pending = await tasks.pending_reality_checks(session)
        return TaskListOut(tasks=[TaskOut.model_validate(t) for t in pending])


# ==== Tasks ====


@app.get("/api/tasks", response_model=TaskListOut)
async def list_tasks(
    status: str | None = None,
    include_archived: bool = Query(default=False, alias="includeArchived"),
    due_before: date | None = Query(default=None, alias="dueBefore"),
    due_after: date | None = Query(default=None, alias="dueAfter"),
) -> TaskListOut:
    if status not in {s.value for s in TaskStatus}:
        # Unknown filters are ignored rather than matching nothing.
        status = None
    async with db.get_session() as session:
        rows = await db.list_tasks(
            session,
            status=status,
            include_archived=include_archived or status == "archived",
            due_before=due_before,
            due_after=due_after,
        )
        return TaskListOut(tasks=[TaskOut.model_validate(t) for t in rows])


@app.post("/api/tasks", response_model=TaskEnvelope, status_code=201)
async def create_task(body: TaskCreate) -> TaskEnvelope:
    async with db.get_session() as session:
        table = await resolve_capacity_table(session)
        task = await tasks.create_task(session, body, table=table)
        return _envelope(task)


@app.post("/api/tasks/bulk/priority", response_model=TaskListOut)
async def bulk_priority(body: BulkPriorityRequest) -> TaskListOut:
    async with db.get_session() as session:
        table = await resolve_capacity_table(session)
        changed = await tasks.change_priority_batch(
            session, body.ids, body.priority, force=body.force, reason=body.reason, table=table
        )
        return TaskListOut(tasks=[TaskOut.model_validate(t) for t in changed])


@app.get("/api/tasks/{task_id}", response_model=TaskEnvelope)
async def get_task(task_id: str) -> TaskEnvelope:
    async with db.get_session() as session:
        return _envelope(await tasks.get_task(session, task_id))


@app.patch("/api/tasks/{task_id}", response_model=TaskEnvelope)
async def update_task(task_id: str, body: TaskPatch) -> TaskEnvelope:
    async with db.get_session() as session:
        table = await resolve_capacity_table(session)
        task = await tasks.update_task(session, task_id, body, table=table)
        return _envelope(task)


@app.delete("/api/tasks/{task_id}", response_model=TaskEnvelope)
async def archive_task(task_id: str, body: ArchiveRequest | None = None) -> TaskEnvelope:
    async with db.get_session() as session:
        task = await tasks.archive_task(session, task_id, body.reason if body else None)
        return _envelope(task)


@app.post("/api/tasks/{task_id}/reschedule", response_model=TaskEnvelope)
async def reschedule_task(task_id: str, body: RescheduleRequest) -> TaskEnvelope:
    async with db.get_session() as session:
        table = await resolve_capacity_table(session)
        task = await tasks.reschedule_task(
            session, task_id, body.due_date, force=body.force, table=table
        )
        return _envelope(task, "Rescheduled")


@app.post("/api/tasks/{task_id}/complete", response_model=TaskEnvelope)
async def complete_task(task_id: str) -> TaskEnvelope:
    async with db.get_session() as session:
        task = await tasks.complete_task(session, task_id)
        return _envelope(task)
