from __future__ import annotations

from pathlib import Path

import click
from typer.main import get_command
from typer.testing import CliRunner

from multibot import __version__
from multibot.main import app

runner = CliRunner()


def test_app_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_all_commands_have_help() -> None:
    """
    Critical Smoke Test: Iterate over EVERY registered command and ensure
    it accepts --help. This catches import errors, broken decorators and
    option declarations typer cannot turn into parameters.
    """
    click_app = get_command(app)
    assert isinstance(click_app, click.Group)
    assert {"read", "branch", "commit", "pull-request", "branch-to-pr"} <= set(click_app.commands)
    for name in click_app.commands:
        result = runner.invoke(app, [name, "--help"])
        assert result.exit_code == 0, f"Command 'multibot {name} --help' failed!"
        assert "Usage:" in result.stdout


def test_broken_config_enters_safe_mode(isolate_config: Path) -> None:
    isolate_config.write_text("[forge\nhost = ", encoding="utf-8")
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "Safe Mode" in result.output
    assert __version__ in result.output
