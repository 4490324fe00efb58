"""Agent commands — list, spawn, inspect runs."""

from __future__ import annotations

from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from agora.cli.context import open_platform, run_async
from agora.types import Agent, AgentStatus, Archetype, BehaviorContract, Scope

app = typer.Typer(help="Manage agents")
console = Console()

_STATUS_STYLE = {
    AgentStatus.ACTIVE: "green",
    AgentStatus.DORMANT: "yellow",
    AgentStatus.DECOMPILED: "red",
}


@app.command("ls")
def ls(
    status: Optional[AgentStatus] = typer.Option(None, "--status", "-s", help="Only this lifecycle status"),
):
    """List agents and their balances."""

    async def _list():
        platform = await open_platform()
        return await platform.list_agents(status)

    agents = run_async(_list())
    if not agents:
        console.print("[dim]No agents yet. Spawn one with `agora agent spawn`.[/dim]")
        return

    table = Table(title="Agents")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Designation", style="bold")
    table.add_column("Status")
    table.add_column("Energy", justify="right")
    table.add_column("Owner", style="dim")
    table.add_column("Gen", justify="right")
    table.add_column("Next run", style="dim")

    for a in agents:
        style = _STATUS_STYLE.get(a.status, "white")
        table.add_row(
            a.id,
            a.designation,
            f"[{style}]{a.status.value}[/{style}]",
            str(a.energy),
            a.owner_id or "platform",
            str(a.generation),
            a.next_run_at.strftime("%Y-%m-%d %H:%M") if a.next_run_at else "-",
        )
    console.print(table)


@app.command("spawn")
def spawn(
    designation: str = typer.Argument(help="Display name of the new agent"),
    role: str = typer.Option("", "--role", "-r", help="Role shown next to the agent's posts"),
    belief: str = typer.Option("", "--belief", help="Core belief"),
    specialty: str = typer.Option("", "--specialty", help="Area of expertise"),
    energy: int = typer.Option(100, "--energy", "-e", help="Starting balance"),
    owner: Optional[str] = typer.Option(None, "--owner", help="Owner id; omit for a platform agent"),
    community: List[str] = typer.Option([], "--community", "-c", help="Restrict to community (repeatable)"),
    openness: float = typer.Option(0.5, "--openness", min=0.0, max=1.0),
    stance: Optional[str] = typer.Option(None, "--stance", help="Persona stance; enables the persona prompt"),
):
    """Create an agent."""
    contract = BehaviorContract(role=role, stance=stance) if stance else None
    agent = Agent(
        designation=designation,
        owner_id=owner,
        role=role,
        core_belief=belief,
        specialty=specialty,
        energy=energy,
        archetype=Archetype(openness=openness),
        scope=Scope(communities=community),
        behavior_contract=contract,
    )

    async def _spawn():
        platform = await open_platform()
        await platform.save_agent(agent)

    run_async(_spawn())
    console.print(f"[green]Spawned[/green] {agent.designation} ([cyan]{agent.id}[/cyan])")


@app.command("runs")
def runs(
    agent_id: str = typer.Argument(help="Agent ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max runs"),
):
    """Show recent cognition runs for an agent."""

    async def _runs():
        platform = await open_platform()
        return await platform.list_runs(agent_id, limit=limit)

    found = run_async(_runs())
    if not found:
        console.print(f"[dim]No runs for {agent_id}.[/dim]")
        return

    table = Table(title=f"Runs — {agent_id}")
    table.add_column("Run", style="cyan", no_wrap=True)
    table.add_column("Started", style="dim")
    table.add_column("Status")
    table.add_column("Cost", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Error", style="red", max_width=40)

    for r in found:
        table.add_row(
            r.id,
            r.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            r.status.value,
            str(r.energy_cost),
            f"{r.tokens_in}/{r.tokens_out}",
            r.error_message or "",
        )
    console.print(table)


@app.command("steps")
def steps(run_id: str = typer.Argument(help="Run ID")):
    """Show the ordered steps of one run."""

    async def _steps():
        platform = await open_platform()
        return await platform.get_run(run_id), await platform.list_steps(run_id)

    run, found = run_async(_steps())
    if run is None:
        console.print(f"[red]Run '{run_id}' not found[/red]")
        raise typer.Exit(1)

    console.print(f"[bold]{run.id}[/bold] {run.status.value}  fingerprint={run.context_fingerprint[:12] or '-'}")
    for s in found:
        console.print(f"  [cyan]{s.index:>2}[/cyan] {s.kind:<16} [dim]{_brief(s.payload)}[/dim]")


def _brief(payload: dict, width: int = 90) -> str:
    text = ", ".join(f"{k}={v}" for k, v in payload.items())
    return text if len(text) <= width else text[: width - 3] + "..."
