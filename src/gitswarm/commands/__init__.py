"""CLI command modules for gitswarm.

    - swarm: run a swarm and preview task decomposition
"""

from __future__ import annotations

from . import swarm

__all__ = ["swarm"]
