"""Git operations and repository management.

This package provides async git operations:
    - AsyncRepo: Non-blocking git commands
    - Worktree management
    - Merge, conflict listing and per-file resolution
"""

from __future__ import annotations

from .client import (
    AsyncRepo,
    MergeAttempt,
    MergeSide,
    WorktreeInfo,
    is_repo,
)

__all__ = [
    "AsyncRepo",
    "MergeAttempt",
    "MergeSide",
    "WorktreeInfo",
    "is_repo",
]
