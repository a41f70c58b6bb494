"""Git worktree management for per-agent isolation."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
from pathlib import Path

from gitswarm.core.result import Err, GitError, IsolationError, Ok, Result
from gitswarm.git import AsyncRepo

logger = logging.getLogger(__name__)

# Pre-compiled pattern for worktree directory detection
_WORKTREE_DIR_PATTERN = re.compile(r"^worktree-\d+$")


class WorktreeManager:
    """Manages git worktrees for one swarm.

    Each agent works in its own worktree on its own branch, rooted at the
    shared repository's HEAD at creation time. This prevents:
    - Git index.lock contention
    - Filesystem races between agents
    - Agents observing each other's uncommitted edits

    Layout is `<base_path>/<swarm_id>/worktree-<n>`, so agents in one swarm
    never share a path and distinct swarm ids never share a root.

    Attributes:
        repo: The shared repository
        swarm_root: Directory holding this swarm's worktrees
    """

    def __init__(self, repo: AsyncRepo, base_path: Path, swarm_id: str) -> None:
        self._repo = repo
        self._swarm_id = swarm_id
        self._swarm_root = base_path.expanduser() / swarm_id

    @property
    def swarm_root(self) -> Path:
        return self._swarm_root

    def worktree_path_for(self, index: int) -> Path:
        return self._swarm_root / f"worktree-{index}"

    def branch_name_for(self, agent_id: str) -> str:
        """Branch name unique across swarms: swarm id plus a millisecond timestamp."""
        return f"swarm-{self._swarm_id}-{time.time_ns() // 1_000_000}-{agent_id}"

    async def prepare_swarm_root(self) -> None:
        """Create the swarm's base directory.

        Raises:
            IsolationError: If the directory cannot be created
        """
        try:
            await asyncio.to_thread(self._swarm_root.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise IsolationError(
                f"Failed to create swarm directory: {exc}",
                context={"path": str(self._swarm_root)},
            ) from exc

    async def create_isolated_workspace(self, path: Path, branch_name: str) -> Path:
        """Create `branch_name` at the shared HEAD and check it out at `path`.

        Raises:
            IsolationError: If `path` exists, the branch exists, or git fails
        """
        if path.exists():
            raise IsolationError(
                "Workspace path already exists",
                context={"path": str(path), "branch": branch_name},
            )
        if await self._repo.branch_exists(branch_name):
            raise IsolationError(
                "Branch already exists",
                context={"path": str(path), "branch": branch_name},
            )

        match await self._repo.worktree_add(path, branch_name, new_branch=True, start_point="HEAD"):
            case Ok(created):
                logger.debug("Worktree created at %s on %s", created, branch_name)
                return created
            case Err(err):
                raise IsolationError(
                    f"Failed to create worktree: {err.message}",
                    context={
                        "path": str(path),
                        "branch": branch_name,
                        "stderr": err.context.get("stderr", ""),
                    },
                ) from err

    async def remove_isolated_workspace(self, path: Path) -> Result[None, GitError]:
        """Detach and delete a workspace. Best-effort: never raises.

        Falls back to deleting the directory and pruning git's bookkeeping
        when git no longer recognises the worktree.
        """
        result = await self._repo.worktree_remove(path, force=True)
        if isinstance(result, Ok):
            logger.debug("Worktree removed: %s", path)
            return result

        if path.exists():
            try:
                await asyncio.to_thread(shutil.rmtree, path)
            except OSError as exc:
                logger.warning("Failed to remove worktree %s: %s", path, exc)
                return Err(
                    GitError(f"Failed to remove worktree: {exc}", context={"path": str(path)})
                )

        await self._repo.worktree_prune()
        return Ok(None)

    async def remove_swarm_root(self) -> None:
        """Remove the swarm directory recursively. Best-effort."""
        if self._swarm_root.exists():
            try:
                await asyncio.to_thread(shutil.rmtree, self._swarm_root)
            except OSError as exc:
                logger.warning("Failed to remove swarm directory %s: %s", self._swarm_root, exc)

        match await self._repo.worktree_prune():
            case Err(err):
                logger.warning("git worktree prune failed: %s", err)
            case Ok(_):
                pass

    async def detect_orphaned_worktrees(self, known: set[Path]) -> list[Path]:
        """Worktrees of this swarm not in `known`.

        Leftovers of an aborted spawn: git may have materialised the
        directory, or registered a worktree whose directory is already gone,
        before the agent record learned about it. Both the swarm root and
        git's worktree registry are consulted.
        """
        root = self._swarm_root.resolve()
        candidates: set[Path] = set()

        match await self._repo.worktree_list():
            case Ok(worktrees):
                for info in worktrees:
                    path = info.path.resolve()
                    if path.parent == root and _WORKTREE_DIR_PATTERN.match(path.name):
                        candidates.add(path)
            case Err(err):
                logger.warning("git worktree list failed: %s", err)

        if self._swarm_root.exists():

            def _scan() -> list[Path]:
                return [
                    d.resolve()
                    for d in self._swarm_root.iterdir()
                    if d.is_dir() and _WORKTREE_DIR_PATTERN.match(d.name)
                ]

            candidates.update(await asyncio.to_thread(_scan))

        resolved_known = {p.resolve() for p in known}
        return sorted(path for path in candidates if path not in resolved_known)


__all__ = [
    "WorktreeManager",
]
