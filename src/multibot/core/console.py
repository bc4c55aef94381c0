"""Console output and logging configuration.

stdout belongs to action output (records rendered by ``multibot.ui``);
everything else goes to stderr:
    - console: Rich console for action output
    - stderr_console: Rich console for errors, warnings and log records
    - setup_logging(): Route the ``multibot`` logger through a Rich handler
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "multibot"

# Libraries that log every HTTP request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")

console = Console()
stderr_console = Console(stderr=True)


def _level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.WARNING


def setup_logging(level: str | int = logging.WARNING, verbose: bool = False) -> logging.Logger:
    """Attach a Rich stderr handler to the ``multibot`` logger and return it.

    ``verbose`` forces DEBUG and also lets the HTTP client libraries log
    their requests.
    """
    numeric_level = logging.DEBUG if verbose else _level(level)

    handler = RichHandler(
        console=stderr_console,
        markup=False,
        rich_tracebacks=True,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(numeric_level)

    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for name in NOISY_LOGGERS:
        library = logging.getLogger(name)
        library.handlers.clear()
        if verbose:
            library.addHandler(handler)
        library.setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger


__all__ = ["LOGGER_NAME", "console", "setup_logging", "stderr_console"]
