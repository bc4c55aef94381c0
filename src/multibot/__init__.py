"""multibot - apply one transform to files across many GitHub repositories.

Reads files from every repository, runs a caller-supplied transform over
them, and writes the result back as branches, commits and pull requests
through the forge's git data API (no local clones).

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
