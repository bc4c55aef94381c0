"""CLI tests for the action commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

import multibot.commands.actions as actions
from multibot.core.config import AppConfig, ForgeConfig
from multibot.core.result import ConfigurationError, RateLimitError
from multibot.main import app
from tests.mocks.fake_forge import FakeForge

AUTH = ["--gh-token", "t0ken"]


class _ForgeSession:
    """Stand-in for GitHubClient's async context manager."""

    def __init__(self, forge: FakeForge) -> None:
        self.forge = forge

    async def __aenter__(self) -> FakeForge:
        return self.forge

    async def __aexit__(self, *exc_info: object) -> None:
        return None


@pytest.fixture
def use_forge(monkeypatch: Any, forge: FakeForge) -> FakeForge:
    monkeypatch.setattr(actions, "GitHubClient", lambda config: _ForgeSession(forge))
    return forge


class TestValidation:
    @pytest.mark.parametrize(
        ("argv", "message"),
        [
            (["read", "--repos", "acme/x", "--files", "README.md"], "--gh-token"),
            (["read", "--repos", "acme/x", *AUTH], "Must specify 1+ `--files`"),
            (["read", "--files", "README.md", *AUTH], "Must specify 1+ `--repos`"),
            (["read", "--repos", "x", "--files", "README.md", *AUTH], "Must specify org"),
            (
                ["commit", "--repos", "acme/x", "--files", "a", "--branch-dest", "f", *AUTH],
                "requires `--msg=<message>`",
            ),
            (["branch", "--repos", "acme/x", *AUTH], "Must specify `--branch-dest`"),
            (
                ["branch", "--repos", "acme/x", "--branch-dest", "master", *AUTH],
                "Cannot use `master`",
            ),
            (
                [
                    "branch", "--repos", "acme/x", "--branch-src", "dev",
                    "--branch-dest", "dev", *AUTH,
                ],
                "cannot be the same",
            ),
            (
                ["read", "--repos", "acme/x", "--files", "a", "--gh-user", "bot", *AUTH],
                "not both",
            ),
            (
                ["read", "--repos", "acme/x", "--files", "a", "--format", "yaml", *AUTH],
                "Unknown format",
            ),
        ],
    )
    def test_invalid_input_exits_2(
        self, runner: CliRunner, use_forge: FakeForge, argv: list[str], message: str
    ) -> None:
        result = runner.invoke(app, argv)
        assert result.exit_code == 2, result.output
        assert message in result.output
        assert use_forge.calls == []

    def test_user_requires_password(self) -> None:
        with pytest.raises(ConfigurationError, match="requires `--gh-pass`"):
            actions.build_forge_config(
                ForgeConfig(), actions.ActionArgs(repos=["acme/x"], gh_user="bot")
            )

    def test_run_options_from_flags_and_config(self) -> None:
        config = AppConfig()
        config = config.model_copy(
            update={"run": config.run.model_copy(update={"allow_existing": True})}
        )
        args = actions.ActionArgs(
            repos=["x, y", "acme/z"],
            org="acme",
            files=["./README.md docs/a.md"],
            branch_dest="feature",
            msg="Update docs",
        )
        options = actions.build_run_options("branch-to-pr", args, config)
        assert [r.full_name for r in options.repos] == ["acme/x", "acme/y", "acme/z"]
        assert list(options.files) == ["README.md", "docs/a.md"]
        assert options.branch_src == "master"
        assert options.allow_existing is True
        assert options.pr_title == "Update docs"

    def test_commit_allows_source_equal_to_dest(self) -> None:
        config = AppConfig()
        config = config.model_copy(
            update={"run": config.run.model_copy(update={"branch_src": "feature"})}
        )
        args = actions.ActionArgs(
            repos=["acme/x"], files=["README.md"], branch_dest="feature", msg="m"
        )
        options = actions.build_run_options("commit", args, config)
        assert options.branch_src == options.branch_dest == "feature"

        with pytest.raises(ConfigurationError, match="cannot be the same"):
            actions.build_run_options("branch-to-pr", args, config)


class TestActions:
    def test_read_prints_json_records(
        self, runner: CliRunner, use_forge: FakeForge, capture_console: Console, tmp_path: Path
    ) -> None:
        use_forge.add_repo("acme/x", {"README.md": "danger zone"})
        script = tmp_path / "shout.py"
        script.write_text(
            "def transform(file):\n    return (file.contents or '').upper()\n", encoding="utf-8"
        )

        result = runner.invoke(
            app,
            [
                "read", "--repos", "acme/x", "--files", "README.md",
                "--transform", str(script), "--format", "json", *AUTH,
            ],
        )

        assert result.exit_code == 0, result.output
        [record] = json.loads(capture_console.export_text())
        assert record["content"]["new"] == "DANGER ZONE"
        assert record["branch"] == {"src": "master"}

    def test_branch_to_pr_end_to_end(
        self, runner: CliRunner, use_forge: FakeForge, capture_console: Console
    ) -> None:
        use_forge.add_repo("acme/x", {"README.md": "hello"})

        result = runner.invoke(
            app,
            [
                "branch-to-pr", "--repos", "acme/x", "--files", "README.md",
                "--branch-dest", "feature", "--msg", "Touch readme",
                "--transform", "multibot.engine.transform:identity_transform",
                "--format", "text", *AUTH,
            ],
        )

        assert result.exit_code == 0, result.output
        output = capture_console.export_text()
        assert "# acme/x/README.md #" in output
        assert "# - PR URL:        https://github.com/acme/x/pull/1" in output
        assert use_forge.head("acme/x", "feature") is not None

    def test_global_dry_run_mutates_nothing(
        self, runner: CliRunner, use_forge: FakeForge, capture_console: Console
    ) -> None:
        use_forge.add_repo("acme/x", {"README.md": "hello"})

        result = runner.invoke(
            app,
            [
                "--dry-run", "branch-to-pr", "--repos", "acme/x", "--files", "README.md",
                "--branch-dest", "feature", "--msg", "Touch readme", "--format", "json", *AUTH,
            ],
        )

        assert result.exit_code == 0, result.output
        assert use_forge.mutations() == []
        [record] = json.loads(capture_console.export_text())
        assert record["pullRequest"]["url"] == "DRY_RUN_CREATE_PR_HTML_URL"

    def test_action_error_prints_partial_records_and_exits_1(
        self, runner: CliRunner, use_forge: FakeForge, capture_console: Console
    ) -> None:
        use_forge.add_repo("acme/x", {"README.md": "hello"})
        use_forge.add_repo("acme/y", {"README.md": "hello"})
        use_forge.fail("get_content", "acme/y", RateLimitError("GitHub API FORBIDDEN Error"))

        result = runner.invoke(
            app,
            [
                "read", "--repos", "acme/x", "--repos", "acme/y", "--files", "README.md",
                "--format", "json", *AUTH,
            ],
        )

        assert result.exit_code == 1
        assert "RateLimitError" in result.output
        records = json.loads(capture_console.export_text())
        assert [r["repo"] for r in records] == ["acme/x"]


class TestConfigCommand:
    def test_masks_secrets(self, runner: CliRunner, monkeypatch: Any) -> None:
        monkeypatch.setenv("MULTIBOT_FORGE__TOKEN", "super-secret-token")
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "super-secret-token" not in result.output
        assert "**********" in result.output
        assert "forge.token" in result.output
