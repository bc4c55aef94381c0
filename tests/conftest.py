from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
for entry in (SRC, ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from multibot.engine.models import RepoRef  # noqa: E402
from multibot.engine.orchestrator import RunOptions  # noqa: E402
from tests.mocks.fake_forge import FakeForge  # noqa: E402


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "multibot.toml"
    monkeypatch.setenv("MULTIBOT_CONFIG", str(cfg_path))
    for name in ("MULTIBOT_FORGE__TOKEN", "MULTIBOT_FORGE__USER", "MULTIBOT_FORGE__PASSWORD"):
        monkeypatch.delenv(name, raising=False)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import multibot.commands.actions as actions
    import multibot.core.console as core_console
    import multibot.main as multibot_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(multibot_main, "console", test_console)
    monkeypatch.setattr(actions, "console", test_console)
    return test_console


@pytest.fixture
def forge() -> FakeForge:
    return FakeForge()


@pytest.fixture
def acme_x() -> RepoRef:
    return RepoRef(org="acme", name="x")


@pytest.fixture
def acme_y() -> RepoRef:
    return RepoRef(org="acme", name="y")


@pytest.fixture
def make_options() -> Callable[..., RunOptions]:
    """Build RunOptions for a branch-to-pr style run against the given repos."""

    def _make(repos: list[RepoRef], **overrides: Any) -> RunOptions:
        defaults: dict[str, Any] = {
            "files": ["README.md"],
            "branch_src": "master",
            "branch_dest": "feature",
            "message": "Shout the readme\n\nBody text",
        }
        defaults.update(overrides)
        return RunOptions(repos=repos, **defaults)

    return _make
