"""Tests for the per-agent runner."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gitswarm.core.result import Err, ExecutionError, IsolationError, Ok
from gitswarm.git import AsyncRepo
from gitswarm.swarm.events import EventBus, EventType, SwarmEvent
from gitswarm.swarm.runner import AgentRunner
from gitswarm.swarm.types import AgentState, AgentStatus
from gitswarm.swarm.worktree import WorktreeManager
from tests.mocks.executors import ScriptedExecutor
from tests.mocks.git_repos import run_git


class DictAccessor:
    """In-memory accessor standing in for the orchestrator."""

    swarm_id = "s1"

    def __init__(self, agents: list[AgentState]) -> None:
        self.agents = {a.id: a for a in agents}
        self.updates: list[dict[str, Any]] = []

    def get_agent(self, agent_id: str) -> AgentState:
        return self.agents[agent_id].model_copy()

    def update_agent(self, agent_id: str, **changes: Any) -> AgentState:
        self.updates.append(changes)
        for name, value in changes.items():
            setattr(self.agents[agent_id], name, value)
        return self.agents[agent_id].model_copy()


@pytest.fixture
async def worktrees(git_repo: Path, base_path: Path) -> WorktreeManager:
    match await AsyncRepo.open(git_repo):
        case Ok(repo):
            manager = WorktreeManager(repo, base_path, "s1")
        case Err(err):
            pytest.fail(f"Failed to open repo: {err}")
    await manager.prepare_swarm_root()
    return manager


def _accessor(worktrees: WorktreeManager) -> DictAccessor:
    return DictAccessor(
        [
            AgentState(
                id="agent-1",
                worktree_path=worktrees.worktree_path_for(1),
                branch_name="swarm-s1-0-agent-1",
                task="Subtask 1/1: Add logging",
            )
        ]
    )


class TestAgentRunner:
    @pytest.mark.asyncio
    async def test_success_commits_changes_on_agent_branch(
        self, worktrees: WorktreeManager, git_repo: Path
    ) -> None:
        accessor = _accessor(worktrees)
        executor = ScriptedExecutor({1: {"log.py": "import logging\n"}})

        state = await AgentRunner(accessor, worktrees, executor).run("agent-1")

        assert state.status is AgentStatus.COMPLETED
        assert state.progress == 100
        assert state.start_time is not None and state.end_time is not None
        assert state.output == "done: Subtask 1/1: Add logging"

        workspace = worktrees.worktree_path_for(1)
        assert run_git(workspace, "status", "--porcelain") == ""
        subject = run_git(workspace, "log", "-1", "--format=%s").strip()
        assert subject == "agent-1: Subtask 1/1: Add logging"
        assert not (git_repo / "log.py").exists()

    @pytest.mark.asyncio
    async def test_progress_is_clamped(self, worktrees: WorktreeManager) -> None:
        accessor = _accessor(worktrees)

        await AgentRunner(accessor, worktrees, ScriptedExecutor()).run("agent-1")

        reported = [u["progress"] for u in accessor.updates if set(u) == {"progress"}]
        assert reported == [25, 100]

    @pytest.mark.asyncio
    async def test_no_changes_no_commit(self, worktrees: WorktreeManager, git_repo: Path) -> None:
        accessor = _accessor(worktrees)

        await AgentRunner(accessor, worktrees, ScriptedExecutor()).run("agent-1")

        workspace = worktrees.worktree_path_for(1)
        assert run_git(workspace, "rev-parse", "HEAD") == run_git(git_repo, "rev-parse", "HEAD")

    @pytest.mark.asyncio
    async def test_reported_failure_marks_failed(self, worktrees: WorktreeManager) -> None:
        accessor = _accessor(worktrees)

        with pytest.raises(ExecutionError, match="gave up"):
            await AgentRunner(accessor, worktrees, ScriptedExecutor(fail={1})).run("agent-1")

        agent = accessor.agents["agent-1"]
        assert agent.status is AgentStatus.FAILED
        assert agent.error == "agent 1 gave up"
        assert agent.output == "partial"
        assert agent.end_time is not None

    @pytest.mark.asyncio
    async def test_raising_executor_marks_failed(self, worktrees: WorktreeManager) -> None:
        accessor = _accessor(worktrees)

        with pytest.raises(RuntimeError, match="crashed"):
            await AgentRunner(accessor, worktrees, ScriptedExecutor(raise_on={1})).run("agent-1")

        assert accessor.agents["agent-1"].status is AgentStatus.FAILED
        assert accessor.agents["agent-1"].error == "agent 1 crashed"

    @pytest.mark.asyncio
    async def test_isolation_failure_goes_straight_to_failed(
        self, worktrees: WorktreeManager
    ) -> None:
        accessor = _accessor(worktrees)
        worktrees.worktree_path_for(1).mkdir()
        executor = ScriptedExecutor()

        with pytest.raises(IsolationError):
            await AgentRunner(accessor, worktrees, executor).run("agent-1")

        agent = accessor.agents["agent-1"]
        assert agent.status is AgentStatus.FAILED
        assert agent.start_time is None
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_emits_step_events(self, worktrees: WorktreeManager) -> None:
        bus = EventBus()
        events: list[SwarmEvent] = []
        bus.subscribe(events.append)

        await AgentRunner(_accessor(worktrees), worktrees, ScriptedExecutor(), bus).run("agent-1")
        await bus.close()

        assert [e.type for e in events] == [
            EventType.STEP_START,
            EventType.STEP_PROGRESS,
            EventType.STEP_PROGRESS,
            EventType.STEP_COMPLETE,
        ]
        assert all(e.agent_id == "agent-1" and e.swarm_id == "s1" for e in events)
        assert events[2].data == {"progress": 100}
