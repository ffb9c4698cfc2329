"""Shared test fixtures and configuration for pytest."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import NullPool

from discipline import db


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'discipline.db'}"


@pytest_asyncio.fixture
async def database(database_url: str) -> AsyncGenerator[str]:
    """Fresh SQLite database with all tables created."""
    db.configure(database_url, poolclass=NullPool)
    await db.init_db()
    yield database_url
    await db.dispose()


@pytest_asyncio.fixture
async def session(database: str) -> AsyncGenerator[AsyncSession]:
    async with db.get_session() as session:
        yield session


@pytest.fixture(autouse=True)
def _no_cap_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep capacity limits at their defaults regardless of the caller's shell."""
    for p in ("P1", "P2", "P3", "P4"):
        monkeypatch.delenv(f"DISCIPLINE_{p}_LIMIT", raising=False)
