from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, NoReturn, TypeVar

import typer
from rich.markup import escape

from multibot.core.console import stderr_console
from multibot.core.result import ConfigurationError, MultibotError

F = TypeVar("F", bound=Callable[..., Any])

EXIT_ERROR = 1
EXIT_USAGE = 2


def exit_code_for(exc: MultibotError) -> int:
    """Bad input exits 2, like a click usage error; everything else exits 1."""
    return EXIT_USAGE if isinstance(exc, ConfigurationError) else EXIT_ERROR


def _fail(exc: MultibotError) -> NoReturn:
    stderr_console.print(f"[red]{escape(str(exc))}[/red]")
    raise typer.Exit(code=exit_code_for(exc))


def handle_exceptions(func: F) -> F:
    """Decorate CLI entrypoints to print MultibotErrors to stderr and exit cleanly."""

    if asyncio.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except MultibotError as exc:
                _fail(exc)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except MultibotError as exc:
            _fail(exc)

    return sync_wrapper  # type: ignore[return-value]


__all__ = ["EXIT_ERROR", "EXIT_USAGE", "exit_code_for", "handle_exceptions"]
