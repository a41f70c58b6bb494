from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

import typer
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.markup import escape
from rich.table import Table

from gitswarm.core.console import console
from gitswarm.core.decorators import handle_exceptions
from gitswarm.core.result import ConfigurationError, SwarmError, ValidationError
from gitswarm.swarm import (
    AgentStatus,
    ConflictStrategy,
    DecompositionStrategy,
    EventBus,
    EventType,
    ShellCommandExecutor,
    SwarmConfig,
    SwarmEvent,
    SwarmOrchestrator,
    SwarmState,
    decompose,
)

if TYPE_CHECKING:
    from gitswarm.main import AppState

_STATUS_STYLE = {
    AgentStatus.PENDING: "dim",
    AgentStatus.RUNNING: "yellow",
    AgentStatus.COMPLETED: "green",
    AgentStatus.FAILED: "red",
}


def _print_event(event: SwarmEvent) -> None:
    agent = f"[cyan]{event.agent_id}[/cyan]"
    match event.type:
        case EventType.STEP_START:
            console.print(f"{agent} started: {escape(str(event.data.get('task', '')))}")
        case EventType.STEP_COMPLETE:
            console.print(f"{agent} [green]completed[/green]")
        case EventType.STEP_ERROR:
            console.print(f"{agent} [red]failed[/red]: {escape(str(event.data.get('error', '')))}")
        case EventType.EXECUTION_CANCELLED:
            console.print("[yellow]Swarm cancelled.[/yellow]")
        case _:
            pass


def _agents_table(state: SwarmState) -> Table:
    table = Table(title=f"Swarm {state.config.swarm_id}", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Branch", style="dim")
    table.add_column("Task", style="white")
    table.add_column("Files", justify="right")
    table.add_column("Error", style="red")

    results = {r.agent_id: r for r in state.results}
    for agent in state.agents:
        style = _STATUS_STYLE[agent.status]
        result = results.get(agent.id)
        files = str(len(result.files_modified)) if result else "-"
        error = (result.error if result and result.error else agent.error) or ""
        table.add_row(
            agent.id,
            f"[{style}]{agent.status.value}[/{style}]",
            agent.branch_name,
            escape(agent.task),
            files,
            escape(error),
        )
    return table


def _conflicts_table(state: SwarmState) -> Table:
    table = Table(title="Conflicts", box=box.SIMPLE, expand=True)
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("File", style="white")
    table.add_column("Hunks", justify="right")
    table.add_column("Resolution", no_wrap=True)

    for report in state.conflicts:
        outcome = (
            f"[green]{report.resolution.value}[/green]"
            if report.resolved
            else f"[red]{report.resolution.value} (open)[/red]"
        )
        table.add_row(
            report.agent_id or "-", escape(report.file), str(report.conflict_count), outcome
        )
    return table


def _render(state: SwarmState) -> None:
    console.print(_agents_table(state))
    if state.conflicts:
        console.print(_conflicts_table(state))
    if state.unresolved_conflicts:
        console.print(
            f"[yellow]Merge left open in {state.config.project_path} with "
            f"{len(state.unresolved_conflicts)} unresolved file(s).[/yellow]\n"
            "Resolve them and commit, or run `git merge --abort`."
        )


async def _run_swarm(
    orchestrator: SwarmOrchestrator, bus: EventBus, config: SwarmConfig, preserve: bool
) -> SwarmState:
    try:
        return await orchestrator.run(config, preserve_worktrees=preserve)
    finally:
        await bus.close()


@handle_exceptions
def run(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task to split across the agents."),
    agents: int | None = typer.Option(None, "--agents", "-n", min=1, help="Number of agents."),
    strategy: DecompositionStrategy | None = typer.Option(
        None, "--strategy", "-s", case_sensitive=False, help="Decomposition strategy."
    ),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Shared git repository."),
    command: str | None = typer.Option(
        None, "--command", help="Agent command; `{subtask}` and `{workspace}` are substituted."
    ),
    conflict_strategy: ConflictStrategy | None = typer.Option(
        None, "--conflict-strategy", case_sensitive=False, help="Conflict resolution policy."
    ),
    threshold: int | None = typer.Option(
        None, "--threshold", min=0, help="Largest conflict-hunk count auto-resolved to the agent."
    ),
    base_path: Path | None = typer.Option(None, "--base-path", help="Root for agent worktrees."),
    swarm_id: str | None = typer.Option(None, "--swarm-id", help="Identifier for this swarm."),
    no_merge: bool = typer.Option(False, "--no-merge", help="Run agents without merging."),
    keep_worktrees: bool = typer.Option(
        False, "--keep-worktrees", help="Keep agent worktrees after the run."
    ),
) -> None:
    """Run a swarm of agents on TASK and merge their branches."""
    state: AppState = ctx.obj
    settings = state.config.swarm

    agent_command = command or state.config.agent.command
    if not agent_command:
        raise ConfigurationError(
            "No agent command configured; pass --command or set agent.command in the config file"
        )

    try:
        config = settings.to_swarm_config(
            swarm_id=swarm_id or uuid4().hex[:8],
            task=task,
            project_path=repo,
            agent_count=agents,
            strategy=strategy,
            conflict_strategy=conflict_strategy,
            conflict_marker_threshold=threshold,
            base_path=base_path,
            auto_merge=False if no_merge else None,
        )
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid swarm options: {exc}") from exc
    state.logger.debug("Swarm config: %s", config.model_dump(mode="json"))

    bus = EventBus()
    bus.subscribe(_print_event)
    orchestrator = SwarmOrchestrator(
        ShellCommandExecutor(agent_command, timeout=state.config.agent.timeout), events=bus
    )
    preserve = keep_worktrees or settings.preserve_worktrees

    try:
        result = asyncio.run(_run_swarm(orchestrator, bus, config, preserve))
    except KeyboardInterrupt:
        console.print("[yellow]Swarm cancelled by user.[/yellow]")
        raise typer.Exit(code=1)
    except SwarmError:
        snapshot = orchestrator.get_state()
        if snapshot is not None:
            console.print(_agents_table(snapshot))
        raise

    _render(result)
    if preserve:
        console.print(f"[dim]Worktrees kept under {config.swarm_root}[/dim]")


@handle_exceptions
def plan(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task to split across the agents."),
    agents: int | None = typer.Option(None, "--agents", "-n", min=1, help="Number of agents."),
    strategy: DecompositionStrategy | None = typer.Option(
        None, "--strategy", "-s", case_sensitive=False, help="Decomposition strategy."
    ),
) -> None:
    """Show how TASK would be split, without running anything."""
    state: AppState = ctx.obj
    settings = state.config.swarm
    chosen = strategy or settings.default_strategy
    subtasks = decompose(task, agents or settings.default_agent_count, chosen)

    table = Table(title=f"Plan ({chosen.value})", box=box.SIMPLE, expand=True)
    table.add_column("Agent", style="cyan", no_wrap=True)
    table.add_column("Subtask", style="white")
    for index, subtask in enumerate(subtasks, start=1):
        table.add_row(f"agent-{index}", escape(subtask))
    console.print(table)
