"""Agent lifecycle around an injected executor.

This module provides the AgentExecutor protocol, the boundary where the
actual agent work (an LLM loop, a shell command, a test double) plugs in,
and the AgentRunner that drives one agent from pending to a terminal state
inside its isolated worktree.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from gitswarm.core.result import Err, ExecutionError, Ok
from gitswarm.git import AsyncRepo
from gitswarm.swarm.events import EventBus, EventType, SwarmEvent
from gitswarm.swarm.types import AgentState, AgentStatus
from gitswarm.swarm.worktree import WorktreeManager

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass(slots=True)
class ExecutionOutcome:
    """What an executor reports when it settles.

    Attributes:
        success: Whether the subtask was accomplished
        output: Free-text output captured into the AgentResult
        error: Failure description when success is False
    """

    success: bool
    output: str = ""
    error: str | None = None


class AgentExecutor(Protocol):
    """Protocol for agent execution strategies.

    Implementations do the agent's work inside `workspace`, report
    incremental progress (0-100) through `report_progress`, and manage
    their own timeouts. Changes may be committed or left in the working
    tree; the runner commits leftovers on the agent branch.
    """

    async def execute(
        self,
        workspace: Path,
        subtask: str,
        report_progress: ProgressCallback,
    ) -> ExecutionOutcome:
        """Execute a subtask in the given workspace."""
        ...


class AgentAccessor(Protocol):
    """The orchestrator's handle for reading and mutating agent state."""

    @property
    def swarm_id(self) -> str: ...

    def get_agent(self, agent_id: str) -> AgentState: ...

    def update_agent(self, agent_id: str, **changes: Any) -> AgentState: ...


def _now() -> datetime:
    return datetime.now(UTC)


class AgentRunner:
    """Runs one agent: worktree, executor, commit, terminal status.

    Any failure marks the agent failed and is re-raised so the driver can
    tell failure from success; the driver is responsible for keeping that
    exception away from sibling agents.
    """

    def __init__(
        self,
        accessor: AgentAccessor,
        worktrees: WorktreeManager,
        executor: AgentExecutor,
        events: EventBus | None = None,
    ) -> None:
        self._accessor = accessor
        self._worktrees = worktrees
        self._executor = executor
        self._events = events

    def _emit(self, event_type: EventType, agent_id: str, **data: Any) -> None:
        if self._events is not None:
            self._events.emit(
                SwarmEvent(
                    type=event_type,
                    swarm_id=self._accessor.swarm_id,
                    agent_id=agent_id,
                    data=data,
                )
            )

    def _progress_reporter(self, agent_id: str) -> ProgressCallback:
        def _report(progress: int) -> None:
            clamped = max(0, min(100, int(progress)))
            self._accessor.update_agent(agent_id, progress=clamped)
            self._emit(EventType.STEP_PROGRESS, agent_id, progress=clamped)

        return _report

    async def run(self, agent_id: str) -> AgentState:
        """Drive `agent_id` to completed or failed.

        Raises:
            IsolationError: The worktree could not be created
            ExecutionError: The executor failed or its changes could not be committed
        """
        agent = self._accessor.get_agent(agent_id)
        try:
            workspace = await self._worktrees.create_isolated_workspace(
                agent.worktree_path, agent.branch_name
            )
            self._accessor.update_agent(agent_id, status=AgentStatus.RUNNING, start_time=_now())
            self._emit(EventType.STEP_START, agent_id, task=agent.task, workspace=str(workspace))

            outcome = await self._executor.execute(
                workspace, agent.task, self._progress_reporter(agent_id)
            )
            self._accessor.update_agent(agent_id, output=outcome.output)
            if not outcome.success:
                raise ExecutionError(
                    outcome.error or "Executor reported failure", context={"agent": agent_id}
                )

            await self._commit_leftovers(workspace, agent)
        except Exception as exc:
            message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
            self._accessor.update_agent(
                agent_id, status=AgentStatus.FAILED, error=message, end_time=_now()
            )
            self._emit(EventType.STEP_ERROR, agent_id, error=message)
            logger.error("Agent %s failed: %s", agent_id, message)
            raise

        state = self._accessor.update_agent(
            agent_id, status=AgentStatus.COMPLETED, progress=100, end_time=_now()
        )
        self._emit(EventType.STEP_COMPLETE, agent_id, output=outcome.output)
        logger.debug("Agent %s completed", agent_id)
        return state

    async def _commit_leftovers(self, workspace: Path, agent: AgentState) -> None:
        """Commit uncommitted changes in the worktree onto the agent branch."""
        repo = AsyncRepo(workspace)
        match await repo.status_short():
            case Ok(entries):
                if not entries:
                    return
            case Err(err):
                raise ExecutionError(
                    f"Could not inspect workspace: {err.message}", context={"agent": agent.id}
                ) from err

        match await repo.add(all=True):
            case Err(err):
                raise ExecutionError(
                    f"Could not stage changes: {err.message}", context={"agent": agent.id}
                ) from err
            case Ok(_):
                pass

        match await repo.commit(f"{agent.id}: {agent.task}"):
            case Ok(sha):
                logger.debug("Committed %s changes as %s", agent.id, sha)
            case Err(err):
                raise ExecutionError(
                    f"Could not commit changes: {err.message}", context={"agent": agent.id}
                ) from err


__all__ = [
    "AgentAccessor",
    "AgentExecutor",
    "AgentRunner",
    "ExecutionOutcome",
    "ProgressCallback",
]
