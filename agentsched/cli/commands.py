"""agentsched CLI — Typer-based command-line interface."""

from __future__ import annotations

from datetime import datetime

import typer
from rich.console import Console
from rich.table import Table

from agentsched import __version__

app = typer.Typer(
    name="agentsched",
    help="agentsched - recurring agent execution scheduler",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agentsched v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """agentsched - recurring agent execution scheduler."""


def _open_store():
    from agentsched.core.config.loader import load_config
    from agentsched.storage.store import SchedulerStore

    config = load_config()
    return config, SchedulerStore(config.database.path)


def _service():
    from agentsched.core.cron.service import ScheduleService

    config, db = _open_store()
    return ScheduleService(db, min_interval=config.scheduler.min_interval_minutes)


def _fmt(dt: datetime | None) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC") if dt else "-"


# ════════════════════════════════════════════════════════════
# run: start API server + trigger loop
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn) with the trigger loop."""
    import uvicorn

    console.print(f"[green]Starting agentsched API on {host}:{port}[/green]")
    uvicorn.run("agentsched.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# status: config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration and schedule counts."""
    config, db = _open_store()
    counts = db.count_schedules_by_status()

    table = Table(title="agentsched status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("DB Path", config.database.path)
    table.add_row("Executor", config.executor.base_url)
    table.add_row("Tick", f"{config.scheduler.tick_seconds:g}s")
    for name in ("active", "paused", "completed", "failed"):
        table.add_row(f"Schedules ({name})", str(counts.get(name, 0)))

    console.print(table)


# ════════════════════════════════════════════════════════════
# schedule: schedule management (sub-command group)
# ════════════════════════════════════════════════════════════

schedule_app = typer.Typer(help="Manage schedules")
app.add_typer(schedule_app, name="schedule")


@schedule_app.command("list")
def schedule_list() -> None:
    """List all schedules."""
    schedules = _service().list_schedules()

    if not schedules:
        console.print("[dim]No schedules found.[/dim]")
        return

    table = Table(title="Schedules")
    table.add_column("ID", style="cyan")
    table.add_column("Agent", style="blue")
    table.add_column("Type", style="yellow")
    table.add_column("Rule", style="white")
    table.add_column("Status", style="green")
    table.add_column("Next run", style="dim")

    for s in schedules:
        if s.interval is not None:
            rule = f"every {s.interval} min"
        elif s.cron_expression:
            rule = f"{s.cron_expression} ({s.timezone})"
        else:
            rule = _fmt(s.fixed_time)
        table.add_row(
            str(s.id), str(s.agent_id), s.type.value, rule, s.status.value, _fmt(s.next_run)
        )

    console.print(table)


@schedule_app.command("add")
def schedule_add(
    agent_id: int = typer.Option(..., "--agent", "-a", help="Agent ID"),
    interval: int | None = typer.Option(None, "--interval", "-i", help="Every N minutes"),
    cron: str | None = typer.Option(None, "--cron", "-c", help="Five-field cron expression"),
    at: datetime | None = typer.Option(None, "--at", help="Fire once at this time"),
    timezone: str = typer.Option("UTC", "--tz", help="IANA timezone for --cron/--at"),
    input: str = typer.Option("", "--input", "-m", help="Input handed to the agent"),
) -> None:
    """Create a schedule (exactly one of --interval, --cron, --at)."""
    from agentsched.core.cron.types import RecurrenceRule, ScheduleType
    from agentsched.core.errors import SchedulerError

    if interval is not None:
        kind = ScheduleType.INTERVAL
    elif cron:
        kind = ScheduleType.CRON
    elif at is not None:
        kind = ScheduleType.FIXED
    else:
        console.print("[red]One of --interval, --cron or --at is required[/red]")
        raise typer.Exit(code=1)

    rule = RecurrenceRule(
        type=kind, interval=interval, cron_expression=cron, timezone=timezone, fixed_time=at
    )
    try:
        schedule = _service().create(agent_id, rule, metadata={"input": input})
    except SchedulerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(
        f"[green]Schedule created:[/green] {schedule.id} (next run {_fmt(schedule.next_run)})"
    )


def _transition(action: str, schedule_id: int) -> None:
    from agentsched.core.errors import SchedulerError

    service = _service()
    try:
        if action == "pause":
            service.pause(schedule_id)
        elif action == "resume":
            service.resume(schedule_id)
        else:
            service.delete(schedule_id)
    except SchedulerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)


@schedule_app.command("pause")
def schedule_pause(schedule_id: int = typer.Argument(help="Schedule ID")) -> None:
    """Pause a schedule."""
    _transition("pause", schedule_id)
    console.print(f"[green]Paused schedule:[/green] {schedule_id}")


@schedule_app.command("resume")
def schedule_resume(schedule_id: int = typer.Argument(help="Schedule ID")) -> None:
    """Resume a paused schedule."""
    _transition("resume", schedule_id)
    console.print(f"[green]Resumed schedule:[/green] {schedule_id}")


@schedule_app.command("remove")
def schedule_remove(schedule_id: int = typer.Argument(help="Schedule ID")) -> None:
    """Delete a schedule and its run history."""
    _transition("delete", schedule_id)
    console.print(f"[green]Removed schedule:[/green] {schedule_id}")


@schedule_app.command("runs")
def schedule_runs(
    schedule_id: int = typer.Argument(help="Schedule ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max runs to show"),
) -> None:
    """Show a schedule's run history."""
    from agentsched.core.errors import SchedulerError

    try:
        runs = _service().list_runs(schedule_id, limit=limit)
    except SchedulerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if not runs:
        console.print("[dim]No runs yet.[/dim]")
        return

    table = Table(title=f"Runs of schedule {schedule_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Start", style="blue")
    table.add_column("End", style="blue")
    table.add_column("Error", style="red")

    for r in runs:
        table.add_row(
            str(r.id), r.status.value, _fmt(r.start_time), _fmt(r.end_time), r.error or "-"
        )

    console.print(table)


# ════════════════════════════════════════════════════════════
# agent: agent registry (sub-command group)
# ════════════════════════════════════════════════════════════

agent_app = typer.Typer(help="Manage registered agents")
app.add_typer(agent_app, name="agent")


@agent_app.command("add")
def agent_add(
    name: str = typer.Argument(help="Agent name"),
    description: str = typer.Option("", "--description", "-d", help="Description"),
    agent_id: int | None = typer.Option(None, "--id", help="Platform agent ID"),
) -> None:
    """Register an agent so schedules can reference it."""
    _, db = _open_store()
    if agent_id is not None and db.agent_exists(agent_id):
        console.print(f"[yellow]Agent already exists:[/yellow] {agent_id}")
        return
    new_id = db.add_agent(name, description or None, agent_id=agent_id)
    console.print(f"[green]Agent registered:[/green] {new_id} ({name})")


@agent_app.command("list")
def agent_list() -> None:
    """List registered agents."""
    _, db = _open_store()
    agents = db.list_agents()
    if not agents:
        console.print("[dim]No agents found.[/dim]")
        return

    table = Table(title="Agents")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="blue")
    table.add_column("Description", style="white")
    table.add_column("Created", style="dim")

    for a in agents:
        table.add_row(str(a["id"]), a["name"], a["description"] or "-", a["created_at"])

    console.print(table)
