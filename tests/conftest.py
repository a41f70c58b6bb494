from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

from tests.mocks.git_repos import init_repo

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Temporary git repository with an initial commit."""
    return init_repo(tmp_path / "repo")


@pytest.fixture
def base_path(tmp_path: Path) -> Path:
    """Worktree root outside the repository."""
    return tmp_path / "swarm-base"


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    for key in [k for k in os.environ if k.startswith("GITSWARM_")]:
        monkeypatch.delenv(key, raising=False)
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("GITSWARM_CONFIG", str(cfg_path))
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import gitswarm.commands.swarm as swarm_commands
    import gitswarm.core.console as core_console
    import gitswarm.main as gitswarm_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(gitswarm_main, "console", test_console)
    monkeypatch.setattr(swarm_commands, "console", test_console)
    return test_console
