"""Tests for Result types and the error hierarchy."""

from __future__ import annotations

import pytest

from gitswarm.core.result import (
    ConfigurationError,
    Err,
    ExecutionError,
    GitError,
    IsolationError,
    MergeError,
    Ok,
    OrchestratorError,
    SwarmError,
    ValidationError,
)


class TestResult:
    def test_ok(self) -> None:
        result = Ok(2)
        assert result.is_ok() and not result.is_err()
        assert result.unwrap() == 2
        assert result.map(lambda v: v * 3) == Ok(6)
        assert result.map_err(str) == result

    def test_err(self) -> None:
        error = GitError("boom", context={"cwd": "/tmp"})
        result = Err(error)
        assert result.is_err()
        assert result.unwrap_or(5) == 5
        assert result.map(lambda v: v) is result
        with pytest.raises(GitError):
            result.unwrap()

    def test_pattern_matching(self) -> None:
        match Err(GitError("nope")):
            case Ok(_):
                pytest.fail("Expected Err")
            case Err(err):
                assert err.message == "nope"


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "error_type",
        [
            ValidationError,
            ConfigurationError,
            GitError,
            IsolationError,
            ExecutionError,
            MergeError,
            OrchestratorError,
        ],
    )
    def test_rooted_at_swarm_error(self, error_type: type[SwarmError]) -> None:
        assert issubclass(error_type, SwarmError)

    def test_context_rendered(self) -> None:
        error = IsolationError("Branch already exists", context={"branch": "b1"})
        assert error.message == "Branch already exists"
        assert error.context == {"branch": "b1"}
        assert "branch" in str(error) and "b1" in str(error)

    def test_context_defaults_empty(self) -> None:
        assert MergeError("x").context == {}
        assert str(MergeError("x")) == "x"
