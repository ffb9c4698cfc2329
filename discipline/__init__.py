"""
Task Discipline Engine

This package enforces hard caps on open tasks per priority, rolls overdue
tasks forward once a day, and escalates chronic slippers through staged
reality checks that end in forced archival.
"""

__version__ = "0.1.0"

# Configuration
from discipline.config import Settings

# Capacity
from discipline.capacity import Admission, CapacityTable, check_admission, check_batch_admission

# Errors
from discipline.errors import (
    CapacityExceededError,
    DisciplineError,
    NotFoundError,
    PreconditionFailedError,
    StoreFailureError,
    UnauthorizedError,
    ValidationError,
)

# Core models
from discipline.models import (
    Decision,
    Graveyard,
    Priority,
    PriorityChange,
    RealityCheckEvent,
    RolloverHistory,
    Stage,
    Task,
    TaskStatus,
)

# Escalation queue
from discipline.queue import PendingEscalationQueue

# Reality checks
from discipline.reality_check import Resolution, next_lower_priority, resolve, stage_for_count

# Rollover
from discipline.rollover import SweepResult, advance_task, run_sweep

__all__ = [
    # Version
    "__version__",
    # Models
    "Task",
    "RolloverHistory",
    "RealityCheckEvent",
    "Graveyard",
    "PriorityChange",
    "Priority",
    "TaskStatus",
    "Stage",
    "Decision",
    # Config
    "Settings",
    # Capacity
    "CapacityTable",
    "Admission",
    "check_admission",
    "check_batch_admission",
    # Reality checks
    "Resolution",
    "stage_for_count",
    "next_lower_priority",
    "resolve",
    # Rollover
    "SweepResult",
    "advance_task",
    "run_sweep",
    # Queue
    "PendingEscalationQueue",
    # Errors
    "DisciplineError",
    "ValidationError",
    "NotFoundError",
    "CapacityExceededError",
    "UnauthorizedError",
    "PreconditionFailedError",
    "StoreFailureError",
]
