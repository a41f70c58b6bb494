"""gitswarm - run a swarm of agents against one git repository.

Each agent works on its own branch in an isolated git worktree; completed
branches are merged back into the shared tree with policy-driven conflict
resolution.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
