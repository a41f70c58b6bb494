"""Tests for per-agent worktree isolation."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from gitswarm.core.result import Err, IsolationError, Ok
from gitswarm.git import AsyncRepo
from gitswarm.swarm.worktree import WorktreeManager
from tests.mocks.git_repos import run_git


@pytest.fixture
async def manager(git_repo: Path, base_path: Path) -> WorktreeManager:
    match await AsyncRepo.open(git_repo):
        case Ok(repo):
            return WorktreeManager(repo, base_path, "s1")
        case Err(err):
            pytest.fail(f"Failed to open repo: {err}")


class TestNaming:
    def test_worktree_path_layout(self, manager: WorktreeManager, base_path: Path) -> None:
        assert manager.swarm_root == base_path / "s1"
        assert manager.worktree_path_for(2) == base_path / "s1" / "worktree-2"

    def test_branch_name_carries_swarm_and_agent(self, manager: WorktreeManager) -> None:
        name = manager.branch_name_for("agent-1")
        prefix, _, suffix = name.partition("-s1-")
        assert prefix == "swarm"
        timestamp, _, agent = suffix.partition("-")
        assert timestamp.isdigit()
        assert agent == "agent-1"


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_branch_and_checkout(
        self, manager: WorktreeManager, git_repo: Path
    ) -> None:
        await manager.prepare_swarm_root()
        path = manager.worktree_path_for(1)

        created = await manager.create_isolated_workspace(path, "swarm-test-agent-1")

        assert created == path.resolve()
        assert (created / "README.md").read_text() == "# Test Repo\n"
        assert run_git(created, "rev-parse", "--abbrev-ref", "HEAD").strip() == "swarm-test-agent-1"
        assert run_git(git_repo, "rev-parse", "HEAD") == run_git(created, "rev-parse", "HEAD")

    @pytest.mark.asyncio
    async def test_existing_path_rejected(self, manager: WorktreeManager) -> None:
        path = manager.worktree_path_for(1)
        path.mkdir(parents=True)

        with pytest.raises(IsolationError, match="already exists"):
            await manager.create_isolated_workspace(path, "fresh-branch")

    @pytest.mark.asyncio
    async def test_existing_branch_rejected(
        self, manager: WorktreeManager, git_repo: Path
    ) -> None:
        run_git(git_repo, "branch", "taken")

        with pytest.raises(IsolationError, match="Branch already exists") as excinfo:
            await manager.create_isolated_workspace(manager.worktree_path_for(1), "taken")
        assert excinfo.value.context["branch"] == "taken"
        assert not manager.worktree_path_for(1).exists()

    @pytest.mark.asyncio
    async def test_git_failure_carries_stderr(self, manager: WorktreeManager) -> None:
        with pytest.raises(IsolationError) as excinfo:
            await manager.create_isolated_workspace(manager.worktree_path_for(1), "bad..name")
        assert excinfo.value.context["stderr"]


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_dirty_worktree(self, manager: WorktreeManager, git_repo: Path) -> None:
        path = await manager.create_isolated_workspace(manager.worktree_path_for(1), "b1")
        (path / "scratch.txt").write_text("uncommitted\n")

        assert isinstance(await manager.remove_isolated_workspace(path), Ok)
        assert not path.exists()
        assert str(path) not in run_git(git_repo, "worktree", "list")

    @pytest.mark.asyncio
    async def test_remove_missing_worktree_is_ok(self, manager: WorktreeManager) -> None:
        result = await manager.remove_isolated_workspace(manager.worktree_path_for(9))
        assert isinstance(result, Ok)

    @pytest.mark.asyncio
    async def test_remove_unregistered_directory_falls_back_to_rmtree(
        self, manager: WorktreeManager
    ) -> None:
        stray = manager.worktree_path_for(4)
        stray.mkdir(parents=True)
        (stray / "file.txt").write_text("x")

        assert isinstance(await manager.remove_isolated_workspace(stray), Ok)
        assert not stray.exists()

    @pytest.mark.asyncio
    async def test_remove_swarm_root(self, manager: WorktreeManager) -> None:
        await manager.prepare_swarm_root()
        await manager.create_isolated_workspace(manager.worktree_path_for(1), "b1")

        await manager.remove_swarm_root()
        await manager.remove_swarm_root()

        assert not manager.swarm_root.exists()


class TestOrphans:
    @pytest.mark.asyncio
    async def test_detects_unknown_worktree_dirs(self, manager: WorktreeManager) -> None:
        await manager.prepare_swarm_root()
        known = manager.worktree_path_for(1)
        known.mkdir()
        orphan = manager.worktree_path_for(2)
        orphan.mkdir()
        (manager.swarm_root / "swarm_state.json").write_text("{}")
        (manager.swarm_root / "notes").mkdir()

        assert await manager.detect_orphaned_worktrees({known}) == [orphan.resolve()]

    @pytest.mark.asyncio
    async def test_detects_registered_worktree_with_missing_dir(
        self, manager: WorktreeManager, git_repo: Path
    ) -> None:
        await manager.prepare_swarm_root()
        path = manager.worktree_path_for(1)
        await manager.create_isolated_workspace(path, manager.branch_name_for("agent-1"))
        shutil.rmtree(path)

        orphans = await manager.detect_orphaned_worktrees(set())
        assert orphans == [path.resolve()]

        await manager.remove_isolated_workspace(orphans[0])
        listed = run_git(git_repo, "worktree", "list", "--porcelain")
        assert str(path.resolve()) not in listed
        assert await manager.detect_orphaned_worktrees(set()) == []

    @pytest.mark.asyncio
    async def test_no_root_no_orphans(self, manager: WorktreeManager) -> None:
        assert await manager.detect_orphaned_worktrees(set()) == []
