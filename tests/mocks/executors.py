"""Test doubles for the AgentExecutor protocol."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path

from gitswarm.swarm.runner import ExecutionOutcome, ProgressCallback


def agent_index(workspace: Path) -> int:
    return int(workspace.name.rsplit("-", 1)[-1])


class ScriptedExecutor:
    """Writes per-agent files into the worktree, keyed by agent number.

    Agents listed in `fail` report failure; agents in `raise_on` raise.
    Edits are left uncommitted unless `commit` is set, so the runner's
    leftover commit is exercised by default.
    """

    def __init__(
        self,
        edits: Mapping[int, Mapping[str, str]] | None = None,
        *,
        fail: set[int] | None = None,
        raise_on: set[int] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.edits = edits or {}
        self.fail = fail or set()
        self.raise_on = raise_on or set()
        self.delay = delay
        self.calls: list[tuple[Path, str]] = []

    async def execute(
        self, workspace: Path, subtask: str, report_progress: ProgressCallback
    ) -> ExecutionOutcome:
        index = agent_index(workspace)
        self.calls.append((workspace, subtask))
        report_progress(25)
        if self.delay:
            await asyncio.sleep(self.delay)

        if index in self.raise_on:
            raise RuntimeError(f"agent {index} crashed")
        if index in self.fail:
            return ExecutionOutcome(success=False, output="partial", error=f"agent {index} gave up")

        for rel, content in self.edits.get(index, {}).items():
            target = workspace / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)

        report_progress(250)
        return ExecutionOutcome(success=True, output=f"done: {subtask}")


class BlockingExecutor:
    """Never finishes on its own; used to cancel a swarm mid-run.

    `started` is set once `expected` agents are inside execute().
    """

    def __init__(self, expected: int = 1) -> None:
        self.expected = expected
        self.running = 0
        self.started = asyncio.Event()

    async def execute(
        self, workspace: Path, subtask: str, report_progress: ProgressCallback
    ) -> ExecutionOutcome:
        self.running += 1
        if self.running >= self.expected:
            self.started.set()
        await asyncio.Event().wait()
        return ExecutionOutcome(success=True)
