"""Change synthesis engine.

Stages, bottom-up:
    - transform: load and apply the per-file transform
    - reader: read files across repositories
    - branches: create destination branches
    - commits: blobs -> tree -> commit -> fast-forward ref
    - pulls: open pull requests
    - orchestrator: Multibot, one method per action

Only the data model is imported here; the forge client depends on it.
"""

from __future__ import annotations

from .models import ActionOutcome, ResultRecord

__all__ = ["ActionOutcome", "ResultRecord"]
