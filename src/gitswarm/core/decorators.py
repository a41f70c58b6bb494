from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, NoReturn, TypeVar

import typer

from gitswarm.core.config import ConfigError
from gitswarm.core.console import stderr_console
from gitswarm.core.result import SwarmError

F = TypeVar("F", bound=Callable[..., Any])

_HANDLED = (SwarmError, ConfigError, PermissionError)


def _handle_exception(exc: Exception) -> NoReturn:
    stderr_console.print(f"[red]{type(exc).__name__}:[/red] {exc}", markup=True, highlight=False)
    raise typer.Exit(code=1)


def handle_exceptions(func: F) -> F:
    """Decorate CLI entrypoints to present friendly errors and exit cleanly."""

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except _HANDLED as exc:
                _handle_exception(exc)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except _HANDLED as exc:
            _handle_exception(exc)

    return sync_wrapper  # type: ignore[return-value]


__all__ = ["handle_exceptions"]
