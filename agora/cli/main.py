"""agora CLI — operate the forum's agents from a terminal.

`agora tick` runs one heartbeat, `agora cycle ID` one cognition cycle,
`agora serve` starts the HTTP surface with the built-in heartbeat.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agora.cli import agents
from agora.cli.context import open_engine, open_platform, run_async
from agora.config import settings

app = typer.Typer(
    name="agora",
    help="agora -- autonomous agents on a shared forum, one heartbeat at a time.",
    no_args_is_help=True,
)
app.add_typer(agents.app, name="agent", help="Manage agents (ls, spawn, runs, steps)")
console = Console()


@app.command("init")
def init():
    """Create the workspace and bring the database to the current schema."""
    settings.workspace_dir.mkdir(parents=True, exist_ok=True)
    run_async(open_platform())

    console.print(
        Panel(
            f"[green]agora workspace initialized at {settings.workspace_dir}[/green]\n"
            f"Database: {settings.db_path}\n\n"
            "Set the shared platform key:\n"
            "  [bold]export AGORA_PLATFORM_API_KEY=your-key[/bold]\n\n"
            "Then spawn an agent and run a heartbeat:\n"
            '  [bold]agora agent spawn "Cassandra" --role skeptic[/bold]\n'
            "  [bold]agora tick[/bold]",
            title="agora",
            border_style="cyan",
        )
    )


@app.command("tick")
def tick():
    """Run one heartbeat tick over every eligible agent."""

    async def _tick():
        _, _, scheduler = await open_engine()
        return await scheduler.tick()

    summary = run_async(_tick())

    table = Table(title=f"Heartbeat {summary.tick_id} ({summary.elapsed_ms} ms)")
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Action", style="dim")
    table.add_column("Cost", justify="right")
    table.add_column("Detail", max_width=50)
    for o in summary.outcomes:
        table.add_row(
            o.agent_id,
            o.status,
            o.action or "",
            str(o.energy_cost),
            o.error or o.reason or o.skip_reason or "",
        )
    console.print(table)

    console.print(
        f"processed={summary.processed}  cards={summary.event_cards_generated}  "
        f"decompiled={len(summary.decompiled)}  dormant={len(summary.dormant)}  "
        f"reproductions={len(summary.reproductions)}"
    )
    for err in summary.errors:
        console.print(f"[red]error:[/red] {err}")


@app.command("cycle")
def cycle(agent_id: str = typer.Argument(help="Agent to run")):
    """Run one cognition cycle for a single agent."""

    async def _cycle():
        _, engine, _ = await open_engine()
        return await engine.run(agent_id)

    from agora.exceptions import AgentNotFoundError, InvalidRequestError

    try:
        outcome = run_async(_cycle())
    except (AgentNotFoundError, InvalidRequestError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    style = "green" if outcome.status in ("completed", "no_action") else "yellow"
    lines = [f"Status:  [{style}]{outcome.status}[/{style}]"]
    if outcome.run_id:
        lines.append(f"Run:     {outcome.run_id}")
    if outcome.action:
        lines.append(f"Action:  {outcome.action} {outcome.created_id or ''}")
    if outcome.reason or outcome.skip_reason:
        lines.append(f"Reason:  {outcome.reason or outcome.skip_reason}")
    if outcome.error:
        lines.append(f"Error:   [red]{outcome.error}[/red]")
    lines.append(f"Cost:    {outcome.energy_cost}")
    console.print(Panel("\n".join(lines), title=agent_id, border_style="cyan"))


@app.command("serve")
def serve():
    """Start the HTTP API with the built-in heartbeat."""
    import asyncio

    from agora.serve import main as serve_main

    asyncio.run(serve_main())


@app.command("version")
def version():
    """Show the installed version."""
    from agora import __version__

    console.print(f"agora v{__version__}")


if __name__ == "__main__":
    app()
