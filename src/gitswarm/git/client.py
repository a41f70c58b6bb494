from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from gitswarm.core.result import Err, GitError, Ok, Result

MergeSide = Literal["ours", "theirs"]


@dataclass
class WorktreeInfo:
    """Information about a git worktree."""

    path: Path
    branch: str
    commit: str
    is_locked: bool
    prunable: bool


@dataclass
class MergeAttempt:
    """Outcome of `git merge --no-commit`.

    A conflicted merge exits non-zero but is still a completed attempt:
    git leaves the tree in merge state with unmerged paths.
    """

    in_progress: bool
    conflicted: list[Path]
    output: str


async def _run_git(cwd: Path, *args: str) -> Result[str, GitError]:
    """Run git with asyncio and return stdout as text, wrapping failures."""
    if not cwd.exists():
        return Err(GitError("Repository path does not exist", context={"cwd": str(cwd)}))

    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
        )
    except FileNotFoundError:
        return Err(GitError("git executable not found on PATH", context={"cwd": str(cwd)}))
    except OSError as exc:
        return Err(
            GitError(
                "Failed to start git",
                context={"cwd": str(cwd), "args": list(args), "error": str(exc)},
            )
        )

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        detail = message or stdout_text or f"git {' '.join(args)} failed"
        return Err(
            GitError(
                detail,
                context={
                    "cwd": str(cwd),
                    "args": list(args),
                    "returncode": process.returncode,
                    "stderr": message,
                    "stdout": stdout_text,
                },
            )
        )

    return Ok(stdout.decode("utf-8", errors="replace"))


def _parse_worktree_list(output: str) -> list[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output."""
    worktrees: list[WorktreeInfo] = []
    current: dict[str, str] = {}

    def _flush() -> None:
        worktrees.append(
            WorktreeInfo(
                path=Path(current.get("worktree", "")),
                branch=current.get("branch", "").replace("refs/heads/", ""),
                commit=current.get("HEAD", ""),
                is_locked="locked" in current,
                prunable="prunable" in current,
            )
        )

    for line in output.splitlines():
        if not line.strip():
            if current:
                _flush()
                current = {}
            continue

        if line.startswith("worktree "):
            current["worktree"] = line[9:]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[5:]
        elif line.startswith("branch "):
            current["branch"] = line[7:]
        elif line.startswith("locked"):
            current["locked"] = "true"
        elif line.startswith("prunable"):
            current["prunable"] = "true"

    # Handle last entry if no trailing newline
    if current:
        _flush()

    return worktrees


def _split_paths(output: str) -> list[str]:
    """Split `-z` output. NUL-terminated paths are never C-quoted by git."""
    return [entry for entry in output.split("\0") if entry]


class AsyncRepo:
    """Async git wrapper built on subprocess plumbing."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def path(self) -> Path:
        return self._root

    @classmethod
    async def open(cls, path: Path | str = ".") -> Result[AsyncRepo, GitError]:
        root = Path(path).expanduser()
        match await _run_git(root, "rev-parse", "--show-toplevel"):
            case Ok(raw):
                return Ok(cls(Path(raw.strip()).resolve()))
            case Err(err):
                return Err(err)

    async def run_git(self, *args: str) -> Result[str, GitError]:
        """Public wrapper around git subprocess execution."""
        return await _run_git(self._root, *args)

    async def status_short(self) -> Result[list[tuple[str, str]], GitError]:
        """Return short status entries as (status_code, path)."""
        match await _run_git(self._root, "status", "--porcelain", "-z"):
            case Ok(output):
                entries: list[tuple[str, str]] = []
                fields = iter(_split_paths(output))
                for field in fields:
                    status_code = field[:2].strip()
                    entries.append((status_code, field[3:]))
                    # Renames and copies carry the source path as an extra field.
                    if status_code[:1] in ("R", "C"):
                        next(fields, None)
                return Ok(entries)
            case Err(err):
                return Err(err)

    async def add(
        self, *, all: bool = False, paths: Sequence[Path | str] | None = None
    ) -> Result[None, GitError]:
        args: list[str] = ["add"]
        if all:
            args.append("--all")
        elif paths:
            args.append("--")
            args.extend(str(path) for path in paths)
        else:
            return Ok(None)
        result = await _run_git(self._root, *args)
        return result.map(lambda _: None)

    async def commit(self, message: str, *, allow_empty: bool = False) -> Result[str, GitError]:
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        match await _run_git(self._root, *args):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        return await self.head(short=False)

    async def head(self, short: bool = True) -> Result[str, GitError]:
        args = ["rev-parse", "--short", "HEAD"] if short else ["rev-parse", "HEAD"]
        match await _run_git(self._root, *args):
            case Ok(output):
                return Ok(output.strip())
            case Err(err):
                return Err(err)

    async def branch_exists(self, branch: str) -> bool:
        result = await _run_git(
            self._root, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"
        )
        return isinstance(result, Ok)

    async def merge_base(self, left: str, right: str) -> Result[str, GitError]:
        match await _run_git(self._root, "merge-base", left, right):
            case Ok(output):
                return Ok(output.strip())
            case Err(err):
                return Err(err)

    async def changed_files(self, base: str, ref: str) -> Result[list[str], GitError]:
        """Paths that differ between `base` and `ref`."""
        match await _run_git(self._root, "diff", "--name-only", "-z", base, ref):
            case Ok(output):
                return Ok(_split_paths(output))
            case Err(err):
                return Err(err)

    # -------------------------------------------------------------------------
    # Worktree operations
    # -------------------------------------------------------------------------

    async def worktree_add(
        self,
        path: Path,
        branch: str,
        *,
        new_branch: bool = True,
        start_point: str | None = None,
    ) -> Result[Path, GitError]:
        """Create a new worktree.

        Args:
            path: Directory for the new worktree
            branch: Branch name (created if new_branch=True)
            new_branch: If True, create branch with -b flag
            start_point: Base commit/branch (default: HEAD)

        Returns:
            Ok(worktree_path) on success, Err(GitError) on failure
        """
        args: list[str] = ["worktree", "add"]
        if new_branch:
            args.extend(["-b", branch])
        args.append(str(path))
        if not new_branch:
            args.append(branch)
        if start_point:
            args.append(start_point)

        match await _run_git(self._root, *args):
            case Ok(_):
                return Ok(path.resolve())
            case Err(err):
                return Err(err)

    async def worktree_remove(
        self,
        path: Path,
        *,
        force: bool = False,
    ) -> Result[None, GitError]:
        """Remove a worktree.

        Args:
            path: Worktree directory to remove
            force: If True, remove even if dirty
        """
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))

        result = await _run_git(self._root, *args)
        return result.map(lambda _: None)

    async def worktree_list(self) -> Result[list[WorktreeInfo], GitError]:
        """List all worktrees registered with the repository."""
        match await _run_git(self._root, "worktree", "list", "--porcelain"):
            case Ok(output):
                return Ok(_parse_worktree_list(output))
            case Err(err):
                return Err(err)

    async def worktree_prune(self) -> Result[None, GitError]:
        """Prune stale worktree references."""
        result = await _run_git(self._root, "worktree", "prune")
        return result.map(lambda _: None)

    # -------------------------------------------------------------------------
    # Merge operations
    # -------------------------------------------------------------------------

    async def merge_no_commit(self, branch: str) -> Result[MergeAttempt, GitError]:
        """Merge `branch` into HEAD with --no-ff --no-commit.

        Returns Ok for clean and conflicted merges alike; Err only when git
        refused to merge and left no unmerged paths behind.
        """
        merge_result = await _run_git(self._root, "merge", "--no-ff", "--no-commit", branch)

        match await self.get_conflict_files():
            case Ok(conflicted):
                pass
            case Err(err):
                return Err(err)

        match merge_result:
            case Err(err) if not conflicted:
                return Err(err)
            case Ok(output):
                text = output
            case Err(err):
                text = str(err.context.get("stdout", ""))

        return Ok(
            MergeAttempt(
                in_progress=await self.merge_in_progress(),
                conflicted=conflicted,
                output=text,
            )
        )

    async def merge_in_progress(self) -> bool:
        result = await _run_git(self._root, "rev-parse", "--verify", "--quiet", "MERGE_HEAD")
        return isinstance(result, Ok)

    async def merge_abort(self) -> Result[None, GitError]:
        """Abort an in-progress merge."""
        result = await _run_git(self._root, "merge", "--abort")
        return result.map(lambda _: None)

    async def get_conflict_files(self) -> Result[list[Path], GitError]:
        """Get list of files with merge conflicts, relative to the repo root."""
        match await _run_git(self._root, "diff", "--name-only", "-z", "--diff-filter=U"):
            case Ok(output):
                return Ok([Path(line) for line in _split_paths(output)])
            case Err(err):
                return Err(err)

    async def checkout_side(self, path: Path, side: MergeSide) -> Result[None, GitError]:
        """Take one side of a conflicted path and mark it resolved."""
        match await _run_git(self._root, "checkout", f"--{side}", "--", str(path)):
            case Err(err):
                return Err(err)
            case Ok(_):
                pass
        return await self.add(paths=[path])


async def is_repo(path: Path | str = ".") -> Result[bool, GitError]:
    """Check whether `path` lies inside a git repository."""
    target = Path(path).expanduser()
    if not target.exists():
        return Err(GitError("Path does not exist", context={"path": str(target)}))
    if not target.is_dir():
        return Err(GitError("Path is not a directory", context={"path": str(target)}))

    match await _run_git(target, "rev-parse", "--git-dir"):
        case Ok(output):
            return Ok(bool(output.strip()))
        case Err(err):
            return Err(
                GitError(
                    err.message or "Not a git repository",
                    context={"path": str(target), **err.context},
                )
            )
