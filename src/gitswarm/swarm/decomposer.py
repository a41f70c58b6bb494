"""Deterministic task decomposition strategies.

Every strategy is a pure function of (task, agent_count) returning exactly
agent_count distinct, non-empty subtask strings:

- feature:  3 -> Design/Implement/Test, 5 -> Design/Backend/Frontend/Test/
            Integration, otherwise "Part i: <task>"
- testing:  one test category per agent from a fixed catalogue
- refactor: "Module A: <task>", "Module B: <task>", ... then AA, AB, ...
- research: one investigation angle per agent from a fixed catalogue
- generic:  "Subtask i/N: <task>"

The testing and research catalogues have five entries. Past that they
cycle, and later rounds carry a "(pass k)" suffix so entries stay distinct,
e.g. "Unit tests (pass 2): <task>". Only generic is total without that rule.
"""

from __future__ import annotations

import string
from collections.abc import Callable
from typing import Final

from gitswarm.core.result import ValidationError
from gitswarm.swarm.types import DecompositionStrategy

Decomposer = Callable[[str, int], list[str]]

TEST_CATALOGUE: Final[tuple[str, ...]] = (
    "Unit tests",
    "Integration tests",
    "E2E tests",
    "Performance tests",
    "Security tests",
)

RESEARCH_CATALOGUE: Final[tuple[str, ...]] = (
    "Codebase patterns",
    "External solutions",
    "Architecture analysis",
    "Dependency mapping",
    "Performance analysis",
)


def _cycle_catalogue(catalogue: tuple[str, ...], task: str, agent_count: int) -> list[str]:
    subtasks: list[str] = []
    for i in range(agent_count):
        entry = catalogue[i % len(catalogue)]
        round_number = i // len(catalogue) + 1
        label = entry if round_number == 1 else f"{entry} (pass {round_number})"
        subtasks.append(f"{label}: {task}")
    return subtasks


def module_label(index: int) -> str:
    """Spreadsheet-style label for a 0-based index: A..Z, AA, AB, ..."""
    letters = string.ascii_uppercase
    label = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        label = letters[rem] + label
    return label


def decompose_feature(task: str, agent_count: int) -> list[str]:
    if agent_count == 3:
        return [f"Design: {task}", f"Implement: {task}", f"Test: {task}"]
    if agent_count == 5:
        return [
            f"Design: {task}",
            f"Backend: {task}",
            f"Frontend: {task}",
            f"Test: {task}",
            f"Integration: {task}",
        ]
    return [f"Part {i}: {task}" for i in range(1, agent_count + 1)]


def decompose_testing(task: str, agent_count: int) -> list[str]:
    return _cycle_catalogue(TEST_CATALOGUE, task, agent_count)


def decompose_refactor(task: str, agent_count: int) -> list[str]:
    return [f"Module {module_label(i)}: {task}" for i in range(agent_count)]


def decompose_research(task: str, agent_count: int) -> list[str]:
    return _cycle_catalogue(RESEARCH_CATALOGUE, task, agent_count)


def decompose_generic(task: str, agent_count: int) -> list[str]:
    return [f"Subtask {i}/{agent_count}: {task}" for i in range(1, agent_count + 1)]


STRATEGIES: dict[DecompositionStrategy, Decomposer] = {
    DecompositionStrategy.FEATURE: decompose_feature,
    DecompositionStrategy.TESTING: decompose_testing,
    DecompositionStrategy.REFACTOR: decompose_refactor,
    DecompositionStrategy.RESEARCH: decompose_research,
    DecompositionStrategy.GENERIC: decompose_generic,
}


def decompose(
    task: str,
    agent_count: int,
    strategy: DecompositionStrategy | str = DecompositionStrategy.GENERIC,
) -> list[str]:
    """Split `task` into exactly `agent_count` subtasks.

    Args:
        task: Top-level task description
        agent_count: Number of subtasks to produce (>= 1)
        strategy: Strategy enum member or its string value

    Returns:
        List of agent_count distinct, non-empty subtask strings

    Raises:
        ValidationError: Empty task, agent_count < 1, or unknown strategy
    """
    task = task.strip()
    if not task:
        raise ValidationError("Task description must not be empty")
    if agent_count < 1:
        raise ValidationError(
            "agent_count must be at least 1", context={"agent_count": agent_count}
        )

    try:
        resolved = DecompositionStrategy(strategy)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown decomposition strategy: {strategy}",
            context={"choices": [s.value for s in DecompositionStrategy]},
        ) from exc

    return STRATEGIES[resolved](task, agent_count)


__all__ = [
    "RESEARCH_CATALOGUE",
    "STRATEGIES",
    "TEST_CATALOGUE",
    "decompose",
    "module_label",
]
