"""Branch integration with policy-driven conflict resolution.

Agent branches are merged into the shared tree one at a time. Files a merge
leaves conflicted are resolved per file according to the swarm's
ConflictStrategy:

- ours:   keep the shared tree's content
- theirs: keep the agent's content
- manual: leave the file conflicted for a human
- auto:   tiered heuristic by ConflictCategory
    LOCK_FILE: known lock file basename -> keep the shared tree's content
    SMALL:     at most `threshold` conflict hunks -> keep the agent's content
    LARGE:     more hunks than that -> leave for manual review

The auto tiers are a heuristic, not a correctness guarantee: SMALL discards
the shared side of every hunk in the file. The threshold is configurable
(SwarmConfig.conflict_marker_threshold).

Key classes:
- ConflictCategory: Classification used by the auto policy
- MergeConflictResolver: Resolves one conflicted file into a ConflictReport
- BranchIntegrator: Merges one agent branch and drives the resolver
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Final

from gitswarm.core.result import Err, MergeError, Ok
from gitswarm.git import AsyncRepo, MergeSide
from gitswarm.swarm.types import (
    DEFAULT_CONFLICT_MARKER_THRESHOLD,
    DEFAULT_LOCK_FILES,
    AgentResult,
    AgentState,
    ConflictReport,
    ConflictStrategy,
    ResolutionMethod,
)

logger = logging.getLogger(__name__)

# Start of a conflict hunk
_MARKER_START: Final[re.Pattern[str]] = re.compile(r"^<<<<<<< ", re.MULTILINE)


class ConflictCategory(Enum):
    """Classification of a conflicted file under the auto policy."""

    LOCK_FILE = auto()
    SMALL = auto()
    LARGE = auto()


def count_conflict_markers(content: str) -> int:
    """Number of conflict hunks, counted by their start marker lines."""
    return len(_MARKER_START.findall(content))


async def count_conflict_markers_in_file(path: Path) -> int:
    """Count hunks in the working file on disk. Unreadable files count 0."""
    try:
        content = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
    except OSError:
        return 0
    return count_conflict_markers(content)


class MergeConflictResolver:
    """Resolves conflicted files left by a merge in the shared repository."""

    def __init__(
        self,
        repo: AsyncRepo,
        strategy: ConflictStrategy = ConflictStrategy.AUTO,
        *,
        threshold: int = DEFAULT_CONFLICT_MARKER_THRESHOLD,
        lock_files: Iterable[str] = DEFAULT_LOCK_FILES,
    ) -> None:
        self._repo = repo
        self._strategy = strategy
        self._threshold = threshold
        self._lock_files = frozenset(lock_files)

    @property
    def strategy(self) -> ConflictStrategy:
        return self._strategy

    def is_lock_file(self, path: Path | str) -> bool:
        """Exact basename match against the known lock files."""
        return Path(path).name in self._lock_files

    def categorize(self, path: Path | str, conflict_count: int) -> ConflictCategory:
        if self.is_lock_file(path):
            return ConflictCategory.LOCK_FILE
        if conflict_count <= self._threshold:
            return ConflictCategory.SMALL
        return ConflictCategory.LARGE

    async def resolve_file(self, path: Path, *, agent_id: str | None = None) -> ConflictReport:
        """Apply the configured strategy to one conflicted file.

        Args:
            path: File path relative to the repository root
            agent_id: Agent whose merge produced the conflict

        Returns:
            ConflictReport describing what was done
        """
        conflict_count = await count_conflict_markers_in_file(self._repo.path / path)
        side = self._choose_side(path, conflict_count)

        resolved = False
        if side is not None:
            match await self._repo.checkout_side(path, side):
                case Ok(_):
                    resolved = True
                    logger.debug("Resolved %s with %s (%d hunks)", path, side, conflict_count)
                case Err(err):
                    logger.warning("Could not take %s side of %s: %s", side, path, err.message)

        if not resolved:
            logger.warning(
                "Conflict in %s needs manual resolution (%d hunks, strategy=%s)",
                path,
                conflict_count,
                self._strategy.value,
            )

        return ConflictReport(
            file=path.as_posix(),
            conflict_count=conflict_count,
            strategy=self._strategy,
            resolution=ResolutionMethod.AUTO if resolved else ResolutionMethod.MANUAL,
            resolved=resolved,
            agent_id=agent_id,
        )

    def _choose_side(self, path: Path, conflict_count: int) -> MergeSide | None:
        match self._strategy:
            case ConflictStrategy.OURS:
                return "ours"
            case ConflictStrategy.THEIRS:
                return "theirs"
            case ConflictStrategy.MANUAL:
                return None
            case ConflictStrategy.AUTO:
                category = self.categorize(path, conflict_count)
                if category is ConflictCategory.LOCK_FILE:
                    return "ours"
                if category is ConflictCategory.SMALL:
                    return "theirs"
                return None


@dataclass
class IntegrationOutcome:
    """Result of integrating one agent branch.

    Attributes:
        result: The agent's AgentResult
        conflicts: One report per conflicted file, in git's order
    """

    result: AgentResult
    conflicts: list[ConflictReport] = field(default_factory=list)

    @property
    def left_open(self) -> bool:
        return any(not c.resolved for c in self.conflicts)


def merge_message(agent: AgentState) -> str:
    return f"Merge {agent.branch_name} ({agent.id}: {agent.task})"


class BranchIntegrator:
    """Merges completed agent branches into the shared tree, one at a time.

    Not safe for concurrent use: every call mutates the shared working tree.
    """

    def __init__(self, repo: AsyncRepo, resolver: MergeConflictResolver) -> None:
        self._repo = repo
        self._resolver = resolver

    async def files_modified(self, branch: str) -> list[str]:
        """Paths the branch changed since it forked from the shared HEAD."""
        match await self._repo.merge_base("HEAD", branch):
            case Ok(base):
                pass
            case Err(err):
                logger.warning("No merge base for %s: %s", branch, err.message)
                return []

        match await self._repo.changed_files(base, branch):
            case Ok(files):
                return files
            case Err(err):
                logger.warning("Could not list changes on %s: %s", branch, err.message)
                return []

    async def integrate(self, agent: AgentState) -> IntegrationOutcome:
        """Merge one agent branch, resolving conflicts per policy.

        Raises:
            MergeError: The merge could not be attempted or committed. The
                shared tree is left without a merge in progress.
        """
        files = await self.files_modified(agent.branch_name)

        if await self._repo.merge_in_progress():
            raise MergeError(
                "Merge in progress in shared tree; resolve it before integrating more branches",
                context={"agent": agent.id, "branch": agent.branch_name},
            )

        match await self._repo.merge_no_commit(agent.branch_name):
            case Ok(attempt):
                pass
            case Err(err):
                if await self._repo.merge_in_progress():
                    await self._repo.merge_abort()
                raise MergeError(
                    f"Merge of {agent.branch_name} failed: {err.message}",
                    context={"agent": agent.id, "stderr": err.context.get("stderr", "")},
                ) from err

        conflicts: list[ConflictReport] = []
        for path in attempt.conflicted:
            conflicts.append(await self._resolver.resolve_file(path, agent_id=agent.id))

        outcome_kwargs = {"agent_id": agent.id, "output": agent.output, "files_modified": files}
        unresolved = [c.file for c in conflicts if not c.resolved]
        if unresolved:
            logger.warning(
                "Merge of %s left open with %d unresolved file(s)", agent.id, len(unresolved)
            )
            return IntegrationOutcome(
                result=AgentResult(
                    success=False,
                    error=f"Unresolved conflicts: {', '.join(unresolved)}",
                    **outcome_kwargs,
                ),
                conflicts=conflicts,
            )

        commit_sha: str | None = None
        if await self._repo.merge_in_progress():
            match await self._repo.commit(merge_message(agent)):
                case Ok(sha):
                    commit_sha = sha
                case Err(err):
                    await self._repo.merge_abort()
                    raise MergeError(
                        f"Committing merge of {agent.branch_name} failed: {err.message}",
                        context={"agent": agent.id},
                    ) from err
        else:
            logger.debug("%s already up to date with %s", self._repo.path, agent.branch_name)

        logger.info("Merged %s (%d file(s), %d conflict(s))", agent.id, len(files), len(conflicts))
        return IntegrationOutcome(
            result=AgentResult(success=True, commit_sha=commit_sha, **outcome_kwargs),
            conflicts=conflicts,
        )


__all__ = [
    "BranchIntegrator",
    "ConflictCategory",
    "IntegrationOutcome",
    "MergeConflictResolver",
    "count_conflict_markers",
    "count_conflict_markers_in_file",
    "merge_message",
]
