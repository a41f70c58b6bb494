"""Swarm orchestration over isolated git worktrees.

This package splits a task across N agents, runs each agent on its own
branch in its own worktree, and merges the branches back sequentially:

    - types: SwarmConfig, AgentState, SwarmState and friends
    - decomposer: task -> per-agent subtasks
    - worktree: worktree and branch lifecycle
    - runner: AgentExecutor protocol and per-agent lifecycle
    - executors: ShellCommandExecutor
    - merge_resolver: branch integration and conflict policy
    - events: EventBus for lifecycle notifications
    - orchestrator: SwarmOrchestrator driver

Usage:
    from gitswarm.swarm import SwarmOrchestrator, SwarmConfig, ShellCommandExecutor

    orchestrator = SwarmOrchestrator(ShellCommandExecutor("my-agent {subtask}"))
    config = SwarmConfig(swarm_id="s1", task="Add logging", agent_count=3, project_path=repo)
    state = await orchestrator.run(config)
"""

from __future__ import annotations

from gitswarm.swarm.decomposer import decompose
from gitswarm.swarm.events import EventBus, EventType, SwarmEvent
from gitswarm.swarm.executors import ShellCommandExecutor
from gitswarm.swarm.merge_resolver import BranchIntegrator, ConflictCategory, MergeConflictResolver
from gitswarm.swarm.orchestrator import SwarmOrchestrator, load_journal
from gitswarm.swarm.runner import AgentExecutor, AgentRunner, ExecutionOutcome, ProgressCallback
from gitswarm.swarm.types import (
    AgentResult,
    AgentState,
    AgentStatus,
    ConflictReport,
    ConflictStrategy,
    DecompositionStrategy,
    ResolutionMethod,
    SwarmConfig,
    SwarmState,
    SwarmStatus,
)
from gitswarm.swarm.worktree import WorktreeManager

__all__ = [
    "AgentExecutor",
    "AgentResult",
    "AgentRunner",
    "AgentState",
    "AgentStatus",
    "BranchIntegrator",
    "ConflictCategory",
    "ConflictReport",
    "ConflictStrategy",
    "DecompositionStrategy",
    "EventBus",
    "EventType",
    "ExecutionOutcome",
    "MergeConflictResolver",
    "ProgressCallback",
    "ResolutionMethod",
    "ShellCommandExecutor",
    "SwarmConfig",
    "SwarmEvent",
    "SwarmOrchestrator",
    "SwarmState",
    "SwarmStatus",
    "WorktreeManager",
    "decompose",
    "load_journal",
]
