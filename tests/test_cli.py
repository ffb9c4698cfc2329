import asyncio
import re
from collections.abc import Generator

import pytest
from click.testing import CliRunner
from sqlalchemy.pool import NullPool

from discipline import cli, db
from discipline.cli import main


@pytest.fixture
def runner(database_url: str, monkeypatch: pytest.MonkeyPatch) -> Generator[CliRunner]:
    """CLI runner against a fresh database; each command runs its own event loop."""
    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    db.configure(database_url, poolclass=NullPool)
    asyncio.run(db.init_db())
    yield CliRunner()
    asyncio.run(db.dispose())


def _add(runner: CliRunner, *args: str) -> str:
    result = runner.invoke(main, ["add", *args])
    assert result.exit_code == 0, result.output
    match = re.search(r"Created ([0-9a-f]{8})", result.output)
    assert match, result.output
    return match.group(1)


def test_add_and_list(runner: CliRunner) -> None:
    _add(runner, "Pay rent", "-p", "P1")

    result = runner.invoke(main, ["list"])

    assert result.exit_code == 0
    assert "Pay rent" in result.output
    assert "P1" in result.output


def test_empty_list(runner: CliRunner) -> None:
    result = runner.invoke(main, ["list"])
    assert "No tasks found" in result.output


def test_add_rejected_at_capacity(runner: CliRunner) -> None:
    for i in range(3):
        _add(runner, f"Urgent {i}", "-p", "P1")

    result = runner.invoke(main, ["add", "Urgent 3", "-p", "P1"])
    assert result.exit_code == 1
    assert "Priority P1 limit reached" in result.output

    _add(runner, "Urgent 3", "-p", "P1", "--force")


def test_usage(runner: CliRunner) -> None:
    for i in range(3):
        _add(runner, f"Urgent {i}", "-p", "P1")

    result = runner.invoke(main, ["usage"])

    assert result.exit_code == 0
    assert "full" in result.output
    assert "3 / 3 used" in result.output
    assert "0 active" in result.output


def test_sweep_escalates_and_decide_resolves(runner: CliRunner) -> None:
    task_id = _add(runner, "Stale task", "-p", "P2", "--due", "2026-03-01")

    for day in ("2026-03-02", "2026-03-03", "2026-03-04"):
        result = runner.invoke(main, ["sweep", "--today", day])
        assert result.exit_code == 0, result.output
        assert "Rolled over 1 task(s)" in result.output

    pending = runner.invoke(main, ["pending"])
    assert "Stale task" in pending.output
    assert "warning" in pending.output

    shown = runner.invoke(main, ["show", task_id])
    assert "Rollovers: 3" in shown.output
    assert "Rollover History" in shown.output

    decided = runner.invoke(main, ["decide", task_id, "downgrade"])
    assert decided.exit_code == 0, decided.output
    assert "Priority downgraded to P3" in decided.output

    assert "No reality checks pending" in runner.invoke(main, ["pending"]).output


def test_review_walks_queue(runner: CliRunner) -> None:
    _add(runner, "First", "--due", "2026-03-01")
    _add(runner, "Second", "--due", "2026-03-01")
    for day in ("2026-03-02", "2026-03-03", "2026-03-04"):
        runner.invoke(main, ["sweep", "--today", day])

    result = runner.invoke(main, ["review"], input="archive\n\ndismiss\n")

    assert result.exit_code == 0, result.output
    assert "Task archived" in result.output
    assert "Task kept for review tomorrow" in result.output
    assert result.output.rstrip().endswith("No reality checks pending")


def test_decide_unknown_task(runner: CliRunner) -> None:
    result = runner.invoke(main, ["decide", "deadbeef", "keep"])
    assert result.exit_code == 1
    assert "Task not found" in result.output


def test_caps_layering(runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    assert runner.invoke(main, ["set-cap", "P2", "1"]).exit_code == 0
    monkeypatch.setenv("DISCIPLINE_P3_LIMIT", "2")

    result = runner.invoke(main, ["caps"])
    rows = result.output.splitlines()
    lines = {p: next(row for row in rows if f" {p} " in row) for p in ("P1", "P2", "P3")}

    assert "db" in lines["P2"] and "1" in lines["P2"]
    assert "env" in lines["P3"]
    assert "default" in lines["P1"]

    _add(runner, "Only slot", "-p", "P2")
    assert runner.invoke(main, ["add", "Overflow", "-p", "P2"]).exit_code == 1

    assert "limit reset" in runner.invoke(main, ["reset-cap", "P2"]).output
    _add(runner, "Overflow", "-p", "P2")


def test_archive_and_complete(runner: CliRunner) -> None:
    done = _add(runner, "Done soon")
    dropped = _add(runner, "Never mind")

    assert "Completed" in runner.invoke(main, ["complete", done]).output
    assert "Archived" in runner.invoke(main, ["archive", dropped, "-r", "Obsolete"]).output

    listing = runner.invoke(main, ["list"]).output
    assert "Done soon" in listing
    assert "Never mind" not in listing
