"""CLI command modules for multibot.

This package contains the user-facing action commands:
    - actions: read, branch, commit, pull-request, branch-to-pr
"""

from __future__ import annotations

from . import actions

__all__ = ["actions"]
