"""Concrete agent executors.

ShellCommandExecutor runs an external agent CLI (or any command) inside the
agent's worktree. The subtask is passed through the environment, and via
`{subtask}`/`{workspace}` placeholders in the command template.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
from pathlib import Path

from gitswarm.swarm.runner import ExecutionOutcome, ProgressCallback

logger = logging.getLogger(__name__)

SUBTASK_ENV = "GITSWARM_SUBTASK"
WORKSPACE_ENV = "GITSWARM_AGENT_WORKSPACE"


class ShellCommandExecutor:
    """Execute a command per agent and capture its output.

    Attributes:
        command: Command template, split with shlex after formatting
        timeout: Seconds before the process is killed (None = unbounded)
    """

    def __init__(self, command: str, *, timeout: float | None = None) -> None:
        if not command.strip():
            raise ValueError("ShellCommandExecutor requires a non-empty command")
        self.command = command
        self.timeout = timeout

    def build_argv(self, workspace: Path, subtask: str) -> list[str]:
        tokens = shlex.split(self.command)
        return [
            token.replace("{subtask}", subtask).replace("{workspace}", str(workspace))
            for token in tokens
        ]

    async def execute(
        self,
        workspace: Path,
        subtask: str,
        report_progress: ProgressCallback,
    ) -> ExecutionOutcome:
        argv = self.build_argv(workspace, subtask)
        env = {**os.environ, SUBTASK_ENV: subtask, WORKSPACE_ENV: str(workspace)}
        report_progress(0)

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=workspace,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
                env=env,
            )
        except FileNotFoundError:
            return ExecutionOutcome(success=False, error=f"Command not found: {argv[0]}")
        except OSError as exc:
            return ExecutionOutcome(success=False, error=f"Failed to start command: {exc}")

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return ExecutionOutcome(
                success=False, error=f"Command timed out after {self.timeout:g}s"
            )
        except BaseException:
            # Cancelled: the worktree is about to be removed under the child.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.debug("Agent command exited %s in %s", proc.returncode, workspace)
            return ExecutionOutcome(
                success=False,
                output=output,
                error=f"Command exited with status {proc.returncode}",
            )

        report_progress(100)
        return ExecutionOutcome(success=True, output=output)


__all__ = [
    "SUBTASK_ENV",
    "WORKSPACE_ENV",
    "ShellCommandExecutor",
]
