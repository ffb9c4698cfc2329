"""Error types and helpers for the task discipline engine."""

from __future__ import annotations

import re
from typing import Any

import click


class DisciplineError(click.ClickException):
    """Base error; carries the HTTP status it maps to."""

    status_code = 500

    def payload(self) -> dict[str, Any]:
        return {"message": self.message}


class ValidationError(DisciplineError):
    """Malformed or missing input."""

    status_code = 400


class NotFoundError(DisciplineError):
    """Unknown task id."""

    status_code = 404

    def __init__(self, task_id: str) -> None:
        super().__init__("Task not found")
        self.task_id = task_id


class CapacityExceededError(DisciplineError):
    """Priority tier already holds its maximum number of open tasks."""

    status_code = 409

    def __init__(self, priority: str, limit: int, current: int) -> None:
        super().__init__(f"Priority {priority} limit reached")
        self.priority = priority
        self.limit = limit
        self.current = current

    def payload(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "priority": self.priority,
            "limit": self.limit,
            "current": self.current,
        }


class UnauthorizedError(DisciplineError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class PreconditionFailedError(DisciplineError):
    """The task is not in a state that allows the requested transition."""

    status_code = 400


class StoreFailureError(DisciplineError):
    """Persistence failed; the message is safe to show to callers."""

    status_code = 500


class SchemaNotInitializedError(StoreFailureError):
    """Raised when the database schema/migrations have not been applied."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table / missing-schema error."""
    if missing_table_name(exc):
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
        if "does not exist" in message and "relation" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""

    lines: list[str] = [
        f"Database schema is not initialized{table_hint}.",
        "Run: `alembic upgrade head`",
        "Or validate with: `discipline schema-check`",
    ]
    return "\n".join(lines)
