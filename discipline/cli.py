"""Main CLI entry point for task-discipline."""

import asyncio

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import db, tasks
from .capacity import (
    PRIORITY_LABELS,
    delete_db_cap,
    resolve_capacity_table,
    resolve_capacity_with_source,
    update_db_cap,
)
from .config import settings
from .logging_setup import setup_logging
from .models import Decision, Priority, Task, TaskStatus
from .queue import PendingEscalationQueue
from .rollover import run_sweep
from .schemas import TaskCreate

console = Console()

PRIORITY_CHOICE = click.Choice([p.value for p in Priority], case_sensitive=False)

STAGE_STYLES = {
    "warning": "yellow",
    "alert": "orange3",
    "intervention": "red",
    "auto_archive": "dim",
}


def _task_table(rows: list[Task], title: str = "Tasks") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("P")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Due")
    table.add_column("Rollovers", justify="right")
    table.add_column("Stage")

    for t in rows:
        stage = t.reality_check_stage or "none"
        style = STAGE_STYLES.get(stage)
        table.add_row(
            t.id[:8],
            t.urgency,
            t.title[:40] + "..." if len(t.title) > 40 else t.title,
            t.status,
            t.due_date.isoformat() if t.due_date else ("someday" if t.someday else "-"),
            str(t.rollover_count or 0),
            f"[{style}]{stage}[/{style}]" if style else "-",
        )
    return table


async def _resolve_id(session, prefix: str) -> str:
    """Accept a full id or the 8-character prefix shown in listings."""
    task = await db.get_task_by_id(session, prefix)
    if task:
        return task.id
    matches = [t.id for t in await db.list_tasks(session, include_archived=True) if t.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise click.ClickException(f"Ambiguous task id prefix: {prefix}")
    return prefix


@click.group()
@click.version_option(version="0.1.0")
@click.option("--log-level", default=None, help="Override DISCIPLINE_LOG_LEVEL")
def main(log_level: str | None) -> None:
    """Task discipline CLI.

    Priority caps, daily rollover and reality checks for your commitments.
    """
    setup_logging((log_level or settings.log_level).upper())


@main.command(name="init-db")
def init_db() -> None:
    """Create all tables (development convenience; prefer alembic)."""
    asyncio.run(db.init_db())
    console.print("[green]✓ Tables created[/green]")


@main.command(name="schema-check", help="Check DB schema readiness for current code.")
def schema_check() -> None:
    async def check() -> None:
        from sqlalchemy import inspect

        from .models import Base

        async with db.get_engine().connect() as conn:
            existing = await conn.run_sync(lambda c: set(inspect(c).get_table_names()))

        missing = sorted(set(Base.metadata.tables) - existing)
        if missing:
            console.print(f"[red]Missing tables: {', '.join(missing)}[/red]")
            console.print("Run: `alembic upgrade head`")
            raise SystemExit(1)
        console.print("[green]✓ Schema looks ready[/green]")

    asyncio.run(check())


@main.command()
@click.argument("title")
@click.option("--priority", "-p", type=PRIORITY_CHOICE, default="P3", help="Priority tier")
@click.option("--due", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Due date")
@click.option("--notes", "-n", default=None, help="Notes")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--someday", is_flag=True, help="Park the task without a due date")
@click.option("--follow-up", is_flag=True, help="Follow-up item (never rolled over)")
@click.option("--force", "-f", is_flag=True, help="Admit even if the priority is at capacity")
def add(
    title: str,
    priority: str,
    due,
    notes: str | None,
    tags: tuple[str, ...],
    someday: bool,
    follow_up: bool,
    force: bool,
) -> None:
    """Create a task.

    TITLE: What needs doing
    """

    async def _add() -> None:
        async with db.get_session() as session:
            table = await resolve_capacity_table(session)
            task = await tasks.create_task(
                session,
                TaskCreate(
                    title=title,
                    urgency=priority.upper(),
                    due_date=due.date() if due else None,
                    notes=notes,
                    tags=list(tags) or None,
                    someday=someday,
                    follow_up_item=follow_up,
                    force=force,
                ),
                table=table,
            )
            console.print(f"[green]✓ Created {task.id[:8]}[/green] {task.title} ({task.urgency})")

    asyncio.run(_add())


@main.command(name="list")
@click.option(
    "--status",
    "status_filter",
    type=click.Choice([s.value for s in TaskStatus]),
    default=None,
    help="Filter by status",
)
@click.option("--all", "include_archived", is_flag=True, help="Include archived tasks")
def list_tasks(status_filter: str | None, include_archived: bool) -> None:
    """List tasks by due date."""

    async def _list() -> None:
        async with db.get_session() as session:
            rows = await db.list_tasks(
                session, status=status_filter, include_archived=include_archived
            )
            if not rows:
                console.print("[yellow]No tasks found[/yellow]")
                return
            console.print(_task_table(rows))

    asyncio.run(_list())


@main.command()
@click.argument("task_id")
def show(task_id: str) -> None:
    """Show a task with its rollover and reality-check history."""

    async def _show() -> None:
        async with db.get_session() as session:
            task = await tasks.get_task(session, await _resolve_id(session, task_id))
            console.print(
                Panel(
                    f"[bold]{task.title}[/bold]\n\n"
                    f"Priority: {task.urgency} ({PRIORITY_LABELS[Priority(task.urgency)]})\n"
                    f"Status: [cyan]{task.status}[/cyan]\n"
                    f"Due: {task.due_date or '-'}\n"
                    f"Rollovers: {task.rollover_count} · Reschedules: {task.reschedule_count}\n"
                    f"Reality check: {task.reality_check_stage}"
                    + (f" (due {task.reality_check_due_at:%Y-%m-%d %H:%M})" if task.reality_check_due_at else ""),
                    title=f"Task: {task.id}",
                )
            )

            history = await db.get_rollover_history(session, task.id)
            if history:
                table = Table(title="Rollover History")
                table.add_column("From")
                table.add_column("To")
                table.add_column("Priority")
                for h in history:
                    table.add_row(str(h.from_date or "-"), str(h.to_date), h.priority)
                console.print(table)

            events = await db.get_reality_check_events(session, task.id)
            if events:
                table = Table(title="Reality Checks")
                table.add_column("When")
                table.add_column("Stage")
                table.add_column("Decision")
                table.add_column("Notes")
                for e in events:
                    table.add_row(
                        e.decision_at.strftime("%Y-%m-%d %H:%M"), e.stage, e.decision, e.notes or ""
                    )
                console.print(table)

    asyncio.run(_show())


@main.command()
def usage() -> None:
    """Show how full each priority tier is."""

    async def _usage() -> None:
        async with db.get_session() as session:
            table = await resolve_capacity_table(session)
            slots = await tasks.usage_summary(session, table=table)

        out = Table(title="Priority Usage")
        out.add_column("Priority", style="cyan")
        out.add_column("Label")
        out.add_column("Usage")
        out.add_column("Accepting")
        for s in slots:
            out.add_row(
                s.priority.value,
                s.label,
                s.description,
                "[green]yes[/green]" if s.allowed else "[red]full[/red]",
            )
        console.print(out)

    asyncio.run(_usage())


@main.command()
@click.argument("priority", type=PRIORITY_CHOICE)
@click.argument("task_ids", nargs=-1, required=True)
@click.option("--force", "-f", is_flag=True, help="Admit even if the priority is at capacity")
@click.option("--reason", "-r", default=None, help="Why the priority changed")
def priority(priority: str, task_ids: tuple[str, ...], force: bool, reason: str | None) -> None:
    """Move one or more tasks to PRIORITY."""

    async def _priority() -> None:
        async with db.get_session() as session:
            table = await resolve_capacity_table(session)
            ids = [await _resolve_id(session, t) for t in task_ids]
            changed = await tasks.change_priority_batch(
                session, ids, priority.upper(), force=force, reason=reason, table=table
            )
            console.print(f"[green]✓ {len(changed)} task(s) now {priority.upper()}[/green]")

    asyncio.run(_priority())


@main.command()
@click.argument("task_id")
@click.argument("due", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--force", "-f", is_flag=True, help="Reopen even if the priority is at capacity")
def reschedule(task_id: str, due, force: bool) -> None:
    """Move a task to a new due date."""

    async def _reschedule() -> None:
        async with db.get_session() as session:
            table = await resolve_capacity_table(session)
            task = await tasks.reschedule_task(
                session, await _resolve_id(session, task_id), due.date(), force=force, table=table
            )
            console.print(
                f"[green]✓ Rescheduled to {task.due_date}[/green] (reschedules: {task.reschedule_count})"
            )

    asyncio.run(_reschedule())


@main.command()
@click.argument("task_id")
def complete(task_id: str) -> None:
    """Mark a task completed."""

    async def _complete() -> None:
        async with db.get_session() as session:
            task = await tasks.complete_task(session, await _resolve_id(session, task_id))
            console.print(f"[green]✓ Completed[/green] {task.title}")

    asyncio.run(_complete())


@main.command()
@click.argument("task_id")
@click.option("--reason", "-r", default=None, help="Why the task is being archived")
def archive(task_id: str, reason: str | None) -> None:
    """Send a task to the graveyard."""

    async def _archive() -> None:
        async with db.get_session() as session:
            task = await tasks.archive_task(session, await _resolve_id(session, task_id), reason)
            console.print(f"[green]✓ Archived[/green] {task.title}")

    asyncio.run(_archive())


@main.command()
@click.option("--today", "today_", type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help="Override today's date")
def sweep(today_) -> None:
    """Run the daily rollover sweep."""

    async def _sweep() -> None:
        async with db.get_session() as session:
            result = await run_sweep(session, today=today_.date() if today_ else None)

        console.print(
            f"Rolled over [cyan]{result.rolled_over}[/cyan] task(s), "
            f"auto-archived [red]{result.auto_archived}[/red]"
        )
        if result.tasks:
            console.print(_task_table(result.tasks, title="Rolled Over"))

    asyncio.run(_sweep())


@main.command()
def pending() -> None:
    """List tasks waiting on a reality-check decision."""

    async def _pending() -> None:
        async with db.get_session() as session:
            rows = await tasks.pending_reality_checks(session)
        if not rows:
            console.print("[green]No reality checks pending[/green]")
            return
        console.print(_task_table(rows, title="Pending Reality Checks"))

    asyncio.run(_pending())


@main.command()
@click.argument("task_id")
@click.argument("decision", type=click.Choice([d.value for d in Decision if d != Decision.AUTO_ARCHIVE]))
@click.option("--notes", "-n", default=None, help="Notes recorded with the decision")
def decide(task_id: str, decision: str, notes: str | None) -> None:
    """Resolve a pending reality check for TASK_ID."""

    async def _decide() -> None:
        async with db.get_session() as session:
            _, message = await tasks.apply_decision(
                session, await _resolve_id(session, task_id), decision, notes
            )
        console.print(f"[green]✓ {message}[/green]")

    asyncio.run(_decide())


@main.command()
def review() -> None:
    """Walk through pending reality checks one at a time."""

    async def resolver(task_id: str, decision: Decision, notes: str | None):
        async with db.get_session() as session:
            return await tasks.apply_decision(session, task_id, decision, notes)

    async def _review() -> None:
        queue = PendingEscalationQueue()
        async with db.get_session() as session:
            queue.sync(await db.list_live_tasks(session))

        while (task := queue.active) is not None:
            stage = task.reality_check_stage
            style = STAGE_STYLES.get(stage, "white")
            console.print(
                Panel(
                    f"[bold]{task.title}[/bold]\n\n"
                    f"Priority {task.urgency} · rolled over {task.rollover_count} times\n"
                    f"{'Notes: ' + task.notes if task.notes else ''}",
                    title=f"[{style}]Reality check: {stage}[/{style}]",
                    subtitle=f"{len(queue)} pending",
                )
            )
            choices = [d.value for d in queue.available_decisions()]
            if queue.can_dismiss():
                choices.append("dismiss")
            choice = click.prompt("Decision", type=click.Choice(choices), default="keep")
            if choice == "dismiss":
                _, message = await queue.dismiss(resolver)
            else:
                notes = click.prompt("Notes", default="", show_default=False) or None
                _, message = await queue.submit(choice, resolver, notes)
            console.print(f"[green]✓ {message}[/green]")

        console.print("[green]No reality checks pending[/green]")

    asyncio.run(_review())


@main.command()
def caps() -> None:
    """Show the resolved capacity table and where each limit comes from."""

    async def _caps() -> None:
        async with db.get_session() as session:
            resolved = await resolve_capacity_with_source(session)

        table = Table(title="Priority Caps")
        table.add_column("Priority", style="cyan")
        table.add_column("Limit")
        table.add_column("Source")
        for p, (limit, source) in resolved.items():
            table.add_row(p.value, "unbounded" if limit is None else str(limit), source)
        console.print(table)

    asyncio.run(_caps())


@main.command(name="set-cap")
@click.argument("priority", type=PRIORITY_CHOICE)
@click.argument("limit")
def set_cap(priority: str, limit: str) -> None:
    """Store a limit for PRIORITY in the database ("none" for unbounded)."""

    async def _set() -> None:
        async with db.get_session() as session:
            await update_db_cap(session, priority.upper(), limit)
        console.print(f"[green]✓ {priority.upper()} limit set to {limit}[/green]")

    asyncio.run(_set())


@main.command(name="reset-cap")
@click.argument("priority", type=PRIORITY_CHOICE)
def reset_cap(priority: str) -> None:
    """Remove the database override for PRIORITY."""

    async def _reset() -> None:
        async with db.get_session() as session:
            removed = await delete_db_cap(session, priority.upper())
        if removed:
            console.print(f"[green]✓ {priority.upper()} limit reset[/green]")
        else:
            console.print(f"[yellow]No database override for {priority.upper()}[/yellow]")

    asyncio.run(_reset())


@main.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", type=int, default=None, help="Port")
def serve(host: str | None, port: int | None) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "discipline.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
