"""Request/response shapes for the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    title: str
    description: str | None = None
    notes: str | None = None
    urgency: str
    status: str
    due_date: date | None = None
    someday: bool = False
    follow_up_item: bool = False
    rollover_count: int = 0
    reschedule_count: int = 0
    last_rolled_over_at: datetime | None = None
    last_rescheduled_at: datetime | None = None
    reality_check_stage: str = "none"
    reality_check_due_at: datetime | None = None
    tags: list[str] | None = None
    context: str | None = None
    project_id: str | None = None
    urls: list[str] | None = None
    sort_order: int | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class TaskCreate(CamelModel):
    # Title/priority are validated by the task operations so that bad values
    # surface as 400s with a readable message.
    title: str | None = None
    description: str | None = None
    urgency: str | None = None
    due_date: date | None = None
    notes: str | None = None
    context: str | None = None
    project_id: str | None = None
    urls: list[str] | None = None
    tags: list[str] | None = None
    someday: bool = False
    follow_up_item: bool = False
    force: bool = False


class TaskPatch(CamelModel):
    title: str | None = None
    description: str | None = None
    urgency: str | None = None
    status: str | None = None
    due_date: date | None = None
    notes: str | None = None
    context: str | None = None
    project_id: str | None = None
    urls: list[str] | None = None
    tags: list[str] | None = None
    someday: bool | None = None
    follow_up_item: bool | None = None
    sort_order: int | None = None
    force: bool = False
    priority_reason: str | None = None


class ArchiveRequest(CamelModel):
    reason: str | None = None


class BulkPriorityRequest(CamelModel):
    ids: list[str] = Field(min_length=1)
    priority: str
    force: bool = False
    reason: str | None = None


class RescheduleRequest(CamelModel):
    due_date: date
    force: bool = False


class DecisionRequest(CamelModel):
    decision: str
    notes: str | None = None


class TaskEnvelope(CamelModel):
    task: TaskOut
    message: str | None = None


class TaskListOut(CamelModel):
    tasks: list[TaskOut]


class PriorityUsageOut(CamelModel):
    allowed: bool
    current: int
    limit: int | None
    tasks_at_priority: list[TaskOut]


class PrioritySlotOut(CamelModel):
    priority: str
    label: str
    current: int
    limit: int | None
    allowed: bool
    description: str


class SweepOut(CamelModel):
    rolled_over: int
    auto_archived: int
    tasks: list[TaskOut]
