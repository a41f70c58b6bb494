"""Data model for swarm execution.

Key classes:
- SwarmConfig: Immutable configuration supplied at initialization
- AgentState: Per-agent lifecycle record owned by the orchestrator
- AgentResult: Outcome of one agent, produced during the merge phase
- ConflictReport: One conflicted file of one agent merge (append-only)
- SwarmState: Mutable root aggregating all of the above

Enums are string-valued so swarm state serialises to a readable journal.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CONFLICT_MARKER_THRESHOLD = 3

DEFAULT_LOCK_FILES: tuple[str, ...] = (
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "Gemfile.lock",
    "Cargo.lock",
    "poetry.lock",
    "uv.lock",
    "composer.lock",
)

_SWARM_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def default_base_path() -> Path:
    """Per-user location for swarm worktrees."""
    return Path.home() / ".gitswarm" / "swarm"


class DecompositionStrategy(str, Enum):
    """How a task is split across agents."""

    FEATURE = "feature"
    TESTING = "testing"
    REFACTOR = "refactor"
    RESEARCH = "research"
    GENERIC = "generic"


class ConflictStrategy(str, Enum):
    """Policy applied to files left conflicted by a merge."""

    AUTO = "auto"
    MANUAL = "manual"
    OURS = "ours"
    THEIRS = "theirs"


class ResolutionMethod(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class AgentStatus(str, Enum):
    """Lifecycle status for one agent."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentStatus.COMPLETED, AgentStatus.FAILED)


class SwarmStatus(str, Enum):
    """Overall swarm status. Declaration order is the forward order."""

    INITIALIZING = "initializing"
    SPAWNING = "spawning"
    RUNNING = "running"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SwarmStatus.COMPLETED, SwarmStatus.FAILED)


_AGENT_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.PENDING: frozenset({AgentStatus.RUNNING, AgentStatus.FAILED}),
    AgentStatus.RUNNING: frozenset({AgentStatus.COMPLETED, AgentStatus.FAILED}),
    AgentStatus.COMPLETED: frozenset(),
    AgentStatus.FAILED: frozenset(),
}

_SWARM_ORDER: tuple[SwarmStatus, ...] = (
    SwarmStatus.INITIALIZING,
    SwarmStatus.SPAWNING,
    SwarmStatus.RUNNING,
    SwarmStatus.MERGING,
    SwarmStatus.COMPLETED,
)


def agent_transition_allowed(current: AgentStatus, new: AgentStatus) -> bool:
    return new in _AGENT_TRANSITIONS[current]


def swarm_transition_allowed(current: SwarmStatus, new: SwarmStatus) -> bool:
    """Forward-only moves; any non-terminal status may fail."""
    if current.is_terminal:
        return False
    if new is SwarmStatus.FAILED:
        return True
    return _SWARM_ORDER.index(new) > _SWARM_ORDER.index(current)


class SwarmConfig(BaseModel):
    """Immutable swarm configuration.

    Attributes:
        swarm_id: Identifier used in worktree paths and branch names
        task: Top-level task description
        agent_count: Number of agents (>= 1)
        strategy: Task decomposition strategy
        base_path: Root directory for isolated worktrees
        project_path: Shared git repository
        auto_merge: Integrate agent branches during the merge phase
        conflict_strategy: Resolution policy for conflicted files
        conflict_marker_threshold: Largest marker count `auto` resolves to the agent's side
        lock_files: Basenames `auto` always resolves to the shared tree's side
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    swarm_id: str
    task: str
    agent_count: int = Field(..., ge=1)
    strategy: DecompositionStrategy = DecompositionStrategy.GENERIC
    base_path: Path = Field(default_factory=default_base_path)
    project_path: Path
    auto_merge: bool = True
    conflict_strategy: ConflictStrategy = ConflictStrategy.AUTO
    conflict_marker_threshold: int = Field(default=DEFAULT_CONFLICT_MARKER_THRESHOLD, ge=0)
    lock_files: tuple[str, ...] = DEFAULT_LOCK_FILES

    @field_validator("swarm_id")
    @classmethod
    def _check_swarm_id(cls, v: str) -> str:
        if not _SWARM_ID_PATTERN.match(v):
            raise ValueError(
                f"swarm_id {v!r} must be alphanumeric with '.', '_' or '-' separators"
            )
        return v

    @field_validator("task")
    @classmethod
    def _check_task(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("task must not be empty")
        return v.strip()

    @field_validator("base_path", "project_path")
    @classmethod
    def _expand(cls, v: Path) -> Path:
        return v.expanduser().resolve()

    @property
    def swarm_root(self) -> Path:
        return self.base_path / self.swarm_id


class AgentState(BaseModel):
    """Lifecycle record for one agent."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    worktree_path: Path
    branch_name: str
    status: AgentStatus = AgentStatus.PENDING
    task: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None
    progress: int = Field(default=0, ge=0, le=100)
    output: str = ""


class AgentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: str
    success: bool
    output: str = ""
    error: str | None = None
    files_modified: list[str] = Field(default_factory=list)
    commit_sha: str | None = None


class ConflictReport(BaseModel):
    """Resolution outcome for one conflicted file of one agent merge."""

    model_config = ConfigDict(frozen=True)

    file: str
    conflict_count: int
    strategy: ConflictStrategy
    resolution: ResolutionMethod
    resolved: bool
    agent_id: str | None = None


class SwarmState(BaseModel):
    """Mutable root for one swarm run."""

    config: SwarmConfig
    agents: list[AgentState] = Field(default_factory=list)
    status: SwarmStatus = SwarmStatus.INITIALIZING
    start_time: datetime
    end_time: datetime | None = None
    results: list[AgentResult] = Field(default_factory=list)
    conflicts: list[ConflictReport] = Field(default_factory=list)

    @property
    def unresolved_conflicts(self) -> list[ConflictReport]:
        return [c for c in self.conflicts if not c.resolved]

    def agent(self, agent_id: str) -> AgentState:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        raise KeyError(agent_id)


__all__ = [
    "DEFAULT_CONFLICT_MARKER_THRESHOLD",
    "DEFAULT_LOCK_FILES",
    "AgentResult",
    "AgentState",
    "AgentStatus",
    "ConflictReport",
    "ConflictStrategy",
    "DecompositionStrategy",
    "ResolutionMethod",
    "SwarmConfig",
    "SwarmState",
    "SwarmStatus",
    "agent_transition_allowed",
    "default_base_path",
    "swarm_transition_allowed",
]
