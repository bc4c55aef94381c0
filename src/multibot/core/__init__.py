"""Core shared infrastructure for multibot.

This package contains foundational utilities:
    - config: Application configuration management
    - console: Rich console output and logging
    - dag: Stage graph execution and fail-fast fan-out
    - result: Error handling patterns
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
