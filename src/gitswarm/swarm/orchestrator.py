"""Swarm orchestrator: decompose, isolate, run, merge, clean up."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from gitswarm.core.result import (
    Err,
    IsolationError,
    MergeError,
    Ok,
    OrchestratorError,
    ValidationError,
)
from gitswarm.git import AsyncRepo, is_repo
from gitswarm.swarm.decomposer import decompose
from gitswarm.swarm.events import EventBus, EventType, SwarmEvent
from gitswarm.swarm.merge_resolver import BranchIntegrator, MergeConflictResolver
from gitswarm.swarm.runner import AgentExecutor, AgentRunner
from gitswarm.swarm.types import (
    AgentResult,
    AgentState,
    AgentStatus,
    SwarmConfig,
    SwarmState,
    SwarmStatus,
    agent_transition_allowed,
    swarm_transition_allowed,
)
from gitswarm.swarm.worktree import WorktreeManager

logger = logging.getLogger(__name__)

JOURNAL_NAME = "swarm_state.json"


def _now() -> datetime:
    return datetime.now(UTC)


def load_journal(path: Path) -> SwarmState | None:
    """Load a swarm state journal.

    Returns:
        SwarmState if the file exists and is valid, None otherwise.
    """
    if not path.exists():
        return None

    try:
        return SwarmState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, PydanticValidationError) as exc:
        logger.warning("Ignoring unreadable swarm journal %s: %s", path, exc)
        return None


class SwarmOrchestrator:
    """Orchestrates one swarm run over a shared git repository.

    Workflow:
    1. initialize_swarm: validate the repository, decompose the task, create agents
    2. spawn_agents: give every agent a worktree and run all executors concurrently
    3. merge_results: integrate completed branches sequentially, in agent order
    4. cleanup: remove every worktree and the swarm directory

    The orchestrator owns SwarmState; runners mutate agents only through
    update_agent. Instances are independent, so swarms can run side by side.

    Attributes:
        executor: Does the agents' work inside their worktrees
        events: Optional bus receiving lifecycle events
    """

    def __init__(self, executor: AgentExecutor, *, events: EventBus | None = None) -> None:
        self.executor = executor
        self.events = events
        self._state: SwarmState | None = None
        self._repo: AsyncRepo | None = None
        self._worktrees: WorktreeManager | None = None

    # -------------------------------------------------------------------------
    # State access
    # -------------------------------------------------------------------------

    @property
    def swarm_id(self) -> str:
        return self._require_state().config.swarm_id

    def get_state(self) -> SwarmState | None:
        """Consistent snapshot of the swarm state (a deep copy)."""
        if self._state is None:
            return None
        return self._state.model_copy(deep=True)

    def get_agent(self, agent_id: str) -> AgentState:
        return self._require_state().agent(agent_id).model_copy()

    def update_agent(self, agent_id: str, **changes: Any) -> AgentState:
        """Apply `changes` to one agent, enforcing its forward-only lifecycle.

        Raises:
            OrchestratorError: Illegal status transition
            KeyError: Unknown agent id
        """
        agent = self._require_state().agent(agent_id)
        new_status = changes.get("status")
        if new_status is not None and new_status != agent.status:
            target = AgentStatus(new_status)
            if not agent_transition_allowed(agent.status, target):
                raise OrchestratorError(
                    f"Illegal agent transition {agent.status.value} -> {target.value}",
                    context={"agent": agent_id},
                )
        for name, value in changes.items():
            setattr(agent, name, value)
        return agent.model_copy()

    def _require_state(self) -> SwarmState:
        if self._state is None:
            raise OrchestratorError("Swarm not initialized")
        return self._state

    def _advance(self, status: SwarmStatus) -> None:
        state = self._require_state()
        if not swarm_transition_allowed(state.status, status):
            raise OrchestratorError(
                f"Illegal swarm transition {state.status.value} -> {status.value}",
                context={"swarm": state.config.swarm_id},
            )
        state.status = status
        logger.info("Swarm %s: %s", state.config.swarm_id, status.value)

    def _fail(self, error: Exception) -> None:
        state = self._require_state()
        if not state.status.is_terminal:
            state.status = SwarmStatus.FAILED
            state.end_time = _now()
        self._emit(EventType.EXECUTION_ERROR, error=str(error))

    def _emit(self, event_type: EventType, agent_id: str | None = None, **data: Any) -> None:
        if self.events is not None and self._state is not None:
            self.events.emit(
                SwarmEvent(
                    type=event_type,
                    swarm_id=self._state.config.swarm_id,
                    agent_id=agent_id,
                    data=data,
                )
            )

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def initialize_swarm(self, config: SwarmConfig) -> SwarmState:
        """Validate the repository, decompose the task and create agents.

        Nothing is retained when validation fails.

        Raises:
            ValidationError: project_path is not a git repository
            OrchestratorError: This orchestrator already holds a swarm
        """
        if self._state is not None:
            raise OrchestratorError(
                "Swarm already initialized", context={"swarm": self._state.config.swarm_id}
            )
        logger.info(
            "Initializing swarm %s (%d agents, %s)",
            config.swarm_id,
            config.agent_count,
            config.strategy.value,
        )

        match await is_repo(config.project_path):
            case Ok(True):
                pass
            case Ok(False):
                raise ValidationError(
                    "Not a git repository", context={"path": str(config.project_path)}
                )
            case Err(err):
                raise ValidationError(
                    f"Not a git repository: {config.project_path}",
                    context={"stderr": err.context.get("stderr", err.message)},
                ) from err

        match await AsyncRepo.open(config.project_path):
            case Ok(repo):
                pass
            case Err(err):
                raise ValidationError(
                    f"Cannot open repository: {err.message}",
                    context={"path": str(config.project_path)},
                ) from err

        subtasks = decompose(config.task, config.agent_count, config.strategy)
        worktrees = WorktreeManager(repo, config.base_path, config.swarm_id)

        agents: list[AgentState] = []
        for index, subtask in enumerate(subtasks, start=1):
            agent_id = f"agent-{index}"
            agents.append(
                AgentState(
                    id=agent_id,
                    worktree_path=worktrees.worktree_path_for(index),
                    branch_name=worktrees.branch_name_for(agent_id),
                    task=subtask,
                )
            )

        self._repo = repo
        self._worktrees = worktrees
        self._state = SwarmState(config=config, agents=agents, start_time=_now())
        logger.info("Swarm %s initialized with %d agents", config.swarm_id, len(agents))
        return self.get_state()  # type: ignore[return-value]

    async def spawn_agents(self) -> None:
        """Create worktrees and run every agent concurrently until all settle.

        Individual agent failures are recorded on their AgentState. Returns
        only once every agent is terminal.

        Raises:
            IsolationError: The swarm directory could not be created
            OrchestratorError: No agent could obtain a workspace
            asyncio.CancelledError: The spawn was cancelled
        """
        state = self._require_state()
        assert self._worktrees is not None
        self._advance(SwarmStatus.SPAWNING)
        self._emit(EventType.EXECUTION_START, agents=len(state.agents), task=state.config.task)

        try:
            await self._worktrees.prepare_swarm_root()
        except IsolationError as exc:
            self._fail(exc)
            raise

        runner = AgentRunner(self, self._worktrees, self.executor, self.events)
        isolation_failures: list[str] = []

        async def _run_one(agent_id: str) -> None:
            try:
                await runner.run(agent_id)
            except IsolationError:
                isolation_failures.append(agent_id)
            except Exception:
                # Recorded on the agent by the runner; siblings keep going.
                pass

        try:
            async with asyncio.TaskGroup() as tg:
                for agent in state.agents:
                    tg.create_task(_run_one(agent.id), name=f"gitswarm-{agent.id}")
                self._advance(SwarmStatus.RUNNING)
        except asyncio.CancelledError:
            self._abandon_agents("cancelled")
            state.status = SwarmStatus.FAILED
            state.end_time = _now()
            self._emit(EventType.EXECUTION_CANCELLED)
            logger.warning("Swarm %s cancelled during spawn", state.config.swarm_id)
            raise

        self._write_journal()

        if state.agents and len(isolation_failures) == len(state.agents):
            error = OrchestratorError(
                "No agent could obtain an isolated workspace",
                context={"swarm": state.config.swarm_id},
            )
            self._fail(error)
            raise error

        completed = sum(1 for a in state.agents if a.status is AgentStatus.COMPLETED)
        logger.info(
            "Swarm %s: %d/%d agents completed", state.config.swarm_id, completed, len(state.agents)
        )

    def _abandon_agents(self, reason: str) -> None:
        for agent in self._require_state().agents:
            if not agent.status.is_terminal:
                agent.status = AgentStatus.FAILED
                agent.error = reason
                agent.end_time = _now()

    async def merge_results(self) -> SwarmState:
        """Integrate completed agent branches in agent order.

        Completes even when conflicts were left unresolved; inspect
        `conflicts` on the returned state for follow-up work.

        Raises:
            OrchestratorError: Called before spawn_agents, or the shared tree
                holds a merge no recorded conflict accounts for
        """
        state = self._require_state()
        if state.status is not SwarmStatus.RUNNING:
            raise OrchestratorError(
                f"Cannot merge from status {state.status.value}; spawn agents first"
            )
        assert self._repo is not None

        self._advance(SwarmStatus.MERGING)
        resolver = MergeConflictResolver(
            self._repo,
            state.config.conflict_strategy,
            threshold=state.config.conflict_marker_threshold,
            lock_files=state.config.lock_files,
        )
        integrator = BranchIntegrator(self._repo, resolver)

        for agent in state.agents:
            result = await self._merge_agent(agent, integrator)
            state.results.append(result)

        if await self._repo.merge_in_progress() and not state.unresolved_conflicts:
            error = OrchestratorError(
                "Shared tree has an unexplained merge in progress",
                context={"path": str(self._repo.path)},
            )
            self._fail(error)
            raise error

        self._advance(SwarmStatus.COMPLETED)
        state.end_time = _now()
        self._write_journal()
        self._emit(
            EventType.EXECUTION_COMPLETE,
            results=len(state.results),
            conflicts=len(state.conflicts),
            unresolved=len(state.unresolved_conflicts),
        )
        logger.info(
            "Swarm %s completed in %.1fs (%d conflicts, %d unresolved)",
            state.config.swarm_id,
            (state.end_time - state.start_time).total_seconds(),
            len(state.conflicts),
            len(state.unresolved_conflicts),
        )
        return self.get_state()  # type: ignore[return-value]

    async def _merge_agent(self, agent: AgentState, integrator: BranchIntegrator) -> AgentResult:
        state = self._require_state()
        if agent.status is not AgentStatus.COMPLETED:
            logger.warning("Skipping %s (status %s)", agent.id, agent.status.value)
            return AgentResult(
                agent_id=agent.id,
                success=False,
                output=agent.output,
                error=agent.error or "Agent did not complete",
            )

        if not state.config.auto_merge:
            return AgentResult(
                agent_id=agent.id,
                success=True,
                output=agent.output,
                files_modified=await integrator.files_modified(agent.branch_name),
            )

        try:
            outcome = await integrator.integrate(agent)
        except MergeError as exc:
            logger.error("Failed to merge %s: %s", agent.id, exc.message)
            return AgentResult(
                agent_id=agent.id, success=False, output=agent.output, error=exc.message
            )

        state.conflicts.extend(outcome.conflicts)
        return outcome.result

    async def cleanup(self) -> None:
        """Remove every agent worktree and the swarm directory.

        Best-effort and idempotent: failures are logged, every workspace is
        attempted regardless of agent status or earlier failures.
        """
        if self._state is None or self._worktrees is None:
            return

        logger.info("Cleaning up swarm %s", self._state.config.swarm_id)
        known: set[Path] = set()
        for agent in self._state.agents:
            known.add(agent.worktree_path)
            if not agent.worktree_path.exists():
                continue
            match await self._worktrees.remove_isolated_workspace(agent.worktree_path):
                case Err(err):
                    logger.warning("Failed to remove %s: %s", agent.worktree_path, err)
                case Ok(_):
                    pass

        for orphan in await self._worktrees.detect_orphaned_worktrees(known):
            await self._worktrees.remove_isolated_workspace(orphan)

        await self._worktrees.remove_swarm_root()
        logger.info("Swarm cleanup completed")

    async def run(self, config: SwarmConfig, *, preserve_worktrees: bool = False) -> SwarmState:
        """Initialize, spawn and merge, cleaning up afterwards."""
        await self.initialize_swarm(config)
        try:
            await self.spawn_agents()
            return await self.merge_results()
        finally:
            if not preserve_worktrees:
                await self.cleanup()

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    @property
    def journal_path(self) -> Path:
        return self._require_state().config.swarm_root / JOURNAL_NAME

    def _write_journal(self) -> None:
        """Persist the current state next to the worktrees. Best-effort."""
        state = self._require_state()
        try:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            self.journal_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write swarm journal: %s", exc)


__all__ = [
    "JOURNAL_NAME",
    "SwarmOrchestrator",
    "load_journal",
]
