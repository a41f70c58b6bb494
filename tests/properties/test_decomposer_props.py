"""Property-based tests for task decomposition using Hypothesis.

These tests verify the decomposition contract for every strategy:
- Exactly agent_count subtasks
- Subtasks are distinct and non-empty
- Every subtask mentions the task
- Output is deterministic
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from gitswarm.swarm.decomposer import decompose, module_label
from gitswarm.swarm.types import DecompositionStrategy

# === Strategies ===

task_strategy = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc")),
    min_size=1,
    max_size=200,
).filter(lambda s: s.strip() != "")

count_strategy = st.integers(min_value=1, max_value=60)
strategy_strategy = st.sampled_from(list(DecompositionStrategy))


# === Property Tests ===


@given(task=task_strategy, count=count_strategy, strategy=strategy_strategy)
@settings(max_examples=200)
def test_decomposition_contract(task: str, count: int, strategy: DecompositionStrategy) -> None:
    subtasks = decompose(task, count, strategy)

    assert len(subtasks) == count
    assert len(set(subtasks)) == count
    assert all(s.strip() for s in subtasks)
    assert all(task.strip() in s for s in subtasks)


@given(task=task_strategy, count=count_strategy, strategy=strategy_strategy)
def test_decomposition_is_deterministic(
    task: str, count: int, strategy: DecompositionStrategy
) -> None:
    assert decompose(task, count, strategy) == decompose(task, count, strategy)


@given(st.integers(min_value=0, max_value=20_000), st.integers(min_value=0, max_value=20_000))
def test_module_labels_are_injective(a: int, b: int) -> None:
    if a != b:
        assert module_label(a) != module_label(b)
    assert module_label(a).isalpha() and module_label(a).isupper()
