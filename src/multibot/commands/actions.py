"""Action commands: read, branch, commit, pull-request, branch-to-pr.

Every command accepts the same repository / file / branch / auth options,
validates them for its action, runs the orchestrator and prints the
resulting records in the chosen format. On an action error the partial
records are still printed before exiting with status 1.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NoReturn

import typer
from pydantic import ValidationError
from rich.markup import escape

from multibot.core.config import AppConfig, ForgeConfig
from multibot.core.console import console, stderr_console
from multibot.core.decorators import exit_code_for, handle_exceptions
from multibot.core.result import ConfigurationError, MultibotError, PolicyViolation
from multibot.engine.models import ActionOutcome, resolve_repos
from multibot.engine.orchestrator import Multibot, RunOptions, normalize_files
from multibot.engine.transform import Transform, load_transform
from multibot.forge import GitHubClient
from multibot.ui.display import get_formatter

if TYPE_CHECKING:
    from multibot.main import AppState

ACTIONS: dict[str, Callable[[Multibot], Awaitable[ActionOutcome]]] = {
    "read": Multibot.read,
    "branch": Multibot.branch,
    "commit": Multibot.commit,
    "pull-request": Multibot.pull_request,
    "branch-to-pr": Multibot.branch_to_pr,
}

NEEDS_FILES = frozenset({"read", "commit", "branch-to-pr"})
NEEDS_MESSAGE = frozenset({"commit", "pull-request", "branch-to-pr"})
NEEDS_DEST = frozenset({"branch", "commit", "pull-request", "branch-to-pr"})
NEEDS_DISTINCT_BRANCHES = frozenset({"branch", "branch-to-pr"})


@dataclass
class ActionArgs:
    """Raw command-line values shared by every action command."""

    repos: list[str]
    org: str | None = None
    files: list[str] | None = None
    branch_src: str | None = None
    branch_dest: str | None = None
    allow_existing: bool = False
    transform: str | None = None
    output_format: str | None = None
    msg: str | None = None
    title: str | None = None
    gh_token: str | None = None
    gh_user: str | None = None
    gh_pass: str | None = None
    gh_host: str | None = None
    gh_path_prefix: str | None = None


def _split_values(values: Iterable[str] | None) -> list[str]:
    """Accept repeated flags as well as space / comma separated lists."""
    return [part for value in values or [] for part in re.split(r"[\s,]+", value) if part]


def build_forge_config(base: ForgeConfig, args: ActionArgs) -> ForgeConfig:
    """Overlay ``--gh-*`` flags on the configured forge settings and check auth."""
    overrides = {
        "token": args.gh_token,
        "user": args.gh_user,
        "password": args.gh_pass,
        "host": args.gh_host,
        "path_prefix": args.gh_path_prefix,
    }
    data = base.model_dump()
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        forge = ForgeConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid forge settings: {exc}") from exc

    if forge.token is None and not forge.user:
        raise ConfigurationError("Must specify `--gh-user` + `--gh-pass` or `--gh-token`")
    if forge.token is not None and forge.user:
        raise ConfigurationError(
            "Must specify either `--gh-user` + `--gh-pass` or `--gh-token`, not both"
        )
    if forge.user and forge.password is None:
        raise ConfigurationError("`--gh-user` requires `--gh-pass`")
    return forge


def build_run_options(action: str, args: ActionArgs, config: AppConfig) -> RunOptions:
    """Validate command-line input for ``action`` and build the run options."""
    run = config.run
    repos = resolve_repos(_split_values(args.repos), args.org)
    if not repos:
        raise ConfigurationError("Must specify 1+ `--repos`")

    files = normalize_files(_split_values(args.files))
    if action in NEEDS_FILES and not files:
        raise ConfigurationError("Must specify 1+ `--files`")

    if action in NEEDS_MESSAGE and not args.msg:
        raise ConfigurationError("Action requires `--msg=<message>`")

    branch_src = args.branch_src or run.branch_src
    branch_dest = args.branch_dest
    if branch_dest in run.protected_branches:
        raise ConfigurationError(f"Cannot use `{branch_dest}` as destination branch")
    if action in NEEDS_DEST and not branch_dest:
        raise ConfigurationError(f"Must specify `--branch-dest` name for `{action}` action")
    if action in NEEDS_DISTINCT_BRANCHES and branch_src == branch_dest:
        raise ConfigurationError("`--branch-dest` and `--branch-src` cannot be the same")

    return RunOptions(
        repos=repos,
        files=files,
        branch_src=branch_src,
        branch_dest=branch_dest,
        allow_existing=args.allow_existing or run.allow_existing,
        dry_run=run.dry_run,
        message=args.msg,
        title=args.title,
        protected_branches=run.protected_branches,
    )


async def run_action(
    action: str, forge: ForgeConfig, options: RunOptions, transform: Transform
) -> ActionOutcome:
    async with GitHubClient(forge) as client:
        bot = Multibot(client, options, transform)
        return await ACTIONS[action](bot)


def _execute(ctx: typer.Context, action: str, args: ActionArgs) -> None:
    state: AppState = ctx.obj
    config = state.config

    try:
        options = build_run_options(action, args, config)
    except PolicyViolation as exc:
        raise ConfigurationError(exc.message, context=exc.context) from exc
    forge = build_forge_config(config.forge, args)
    formatter = get_formatter(args.output_format or config.run.format)
    transform = load_transform(args.transform)

    state.logger.debug(
        "%s: %d repo(s), %d file(s), dry_run=%s",
        action,
        len(options.repos),
        len(options.files),
        options.dry_run,
    )
    outcome = asyncio.run(run_action(action, forge, options, transform))

    if outcome.records:
        console.print(formatter.render(outcome.records), soft_wrap=True)
    if outcome.error is not None:
        _report_error(outcome.error)


def _report_error(error: MultibotError) -> NoReturn:
    stderr_console.print(f"[red]{type(error).__name__}:[/red] {escape(str(error))}")
    raise typer.Exit(code=exit_code_for(error))


# -----------------------------------------------------------------------------
# Shared options
# -----------------------------------------------------------------------------

ReposOption: Any = typer.Option(
    [], "--repos", help="Repositories of form `repo` or `org/repo` (repeatable)."
)
OrgOption: Any = typer.Option(None, "--org", help="Organization for bare repository names.")
FilesOption: Any = typer.Option(None, "--files", help="Files to read / transform (repeatable).")
BranchSrcOption: Any = typer.Option(
    None, "--branch-src", help="Source branch to start from / base for pull requests."
)
BranchDestOption: Any = typer.Option(
    None, "--branch-dest", help="Destination branch to create / commit / open a pull request from."
)
AllowExistingOption: Any = typer.Option(
    False, "--allow-existing", help="Allow existing destination branches / pull requests."
)
TransformOption: Any = typer.Option(
    None, "--transform", help="Transform: path/to/file.py or package.module[:callable]."
)
FormatOption: Any = typer.Option(None, "--format", help="Output format: json, text or diff.")
MsgOption: Any = typer.Option(None, "--msg", help="Commit message / pull request description.")
TitleOption: Any = typer.Option(
    None, "--title", help="Pull request title (defaults to first line of --msg)."
)
TokenOption: Any = typer.Option(None, "--gh-token", help="GitHub token.")
UserOption: Any = typer.Option(None, "--gh-user", help="GitHub user name (needs --gh-pass).")
PassOption: Any = typer.Option(None, "--gh-pass", help="GitHub password (needs --gh-user).")
HostOption: Any = typer.Option(None, "--gh-host", help="GitHub API host.")
PathPrefixOption: Any = typer.Option(
    None, "--gh-path-prefix", help="API path prefix, e.g. /api/v3 for GitHub Enterprise."
)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


@handle_exceptions
def read(
    ctx: typer.Context,
    repos: list[str] = ReposOption,
    org: str | None = OrgOption,
    files: list[str] | None = FilesOption,
    branch_src: str | None = BranchSrcOption,
    transform: str | None = TransformOption,
    output_format: str | None = FormatOption,
    gh_token: str | None = TokenOption,
    gh_user: str | None = UserOption,
    gh_pass: str | None = PassOption,
    gh_host: str | None = HostOption,
    gh_path_prefix: str | None = PathPrefixOption,
) -> None:
    """Read files across repositories and show what the transform would do."""
    args = ActionArgs(
        repos=repos,
        org=org,
        files=files,
        branch_src=branch_src,
        transform=transform,
        output_format=output_format,
        gh_token=gh_token,
        gh_user=gh_user,
        gh_pass=gh_pass,
        gh_host=gh_host,
        gh_path_prefix=gh_path_prefix,
    )
    _execute(ctx, "read", args)


@handle_exceptions
def branch(
    ctx: typer.Context,
    repos: list[str] = ReposOption,
    org: str | None = OrgOption,
    branch_src: str | None = BranchSrcOption,
    branch_dest: str | None = BranchDestOption,
    allow_existing: bool = AllowExistingOption,
    output_format: str | None = FormatOption,
    gh_token: str | None = TokenOption,
    gh_user: str | None = UserOption,
    gh_pass: str | None = PassOption,
    gh_host: str | None = HostOption,
    gh_path_prefix: str | None = PathPrefixOption,
) -> None:
    """Create the destination branch from the source branch in every repository."""
    args = ActionArgs(
        repos=repos,
        org=org,
        branch_src=branch_src,
        branch_dest=branch_dest,
        allow_existing=allow_existing,
        output_format=output_format,
        gh_token=gh_token,
        gh_user=gh_user,
        gh_pass=gh_pass,
        gh_host=gh_host,
        gh_path_prefix=gh_path_prefix,
    )
    _execute(ctx, "branch", args)


@handle_exceptions
def commit(
    ctx: typer.Context,
    repos: list[str] = ReposOption,
    org: str | None = OrgOption,
    files: list[str] | None = FilesOption,
    branch_dest: str | None = BranchDestOption,
    transform: str | None = TransformOption,
    output_format: str | None = FormatOption,
    msg: str | None = MsgOption,
    gh_token: str | None = TokenOption,
    gh_user: str | None = UserOption,
    gh_pass: str | None = PassOption,
    gh_host: str | None = HostOption,
    gh_path_prefix: str | None = PathPrefixOption,
) -> None:
    """Transform files on the destination branch and commit them back to it."""
    args = ActionArgs(
        repos=repos,
        org=org,
        files=files,
        branch_dest=branch_dest,
        transform=transform,
        output_format=output_format,
        msg=msg,
        gh_token=gh_token,
        gh_user=gh_user,
        gh_pass=gh_pass,
        gh_host=gh_host,
        gh_path_prefix=gh_path_prefix,
    )
    _execute(ctx, "commit", args)


@handle_exceptions
def pull_request(
    ctx: typer.Context,
    repos: list[str] = ReposOption,
    org: str | None = OrgOption,
    branch_src: str | None = BranchSrcOption,
    branch_dest: str | None = BranchDestOption,
    allow_existing: bool = AllowExistingOption,
    output_format: str | None = FormatOption,
    msg: str | None = MsgOption,
    title: str | None = TitleOption,
    gh_token: str | None = TokenOption,
    gh_user: str | None = UserOption,
    gh_pass: str | None = PassOption,
    gh_host: str | None = HostOption,
    gh_path_prefix: str | None = PathPrefixOption,
) -> None:
    """Open a pull request from the destination branch into the source branch."""
    args = ActionArgs(
        repos=repos,
        org=org,
        branch_src=branch_src,
        branch_dest=branch_dest,
        allow_existing=allow_existing,
        output_format=output_format,
        msg=msg,
        title=title,
        gh_token=gh_token,
        gh_user=gh_user,
        gh_pass=gh_pass,
        gh_host=gh_host,
        gh_path_prefix=gh_path_prefix,
    )
    _execute(ctx, "pull-request", args)


@handle_exceptions
def branch_to_pr(
    ctx: typer.Context,
    repos: list[str] = ReposOption,
    org: str | None = OrgOption,
    files: list[str] | None = FilesOption,
    branch_src: str | None = BranchSrcOption,
    branch_dest: str | None = BranchDestOption,
    allow_existing: bool = AllowExistingOption,
    transform: str | None = TransformOption,
    output_format: str | None = FormatOption,
    msg: str | None = MsgOption,
    title: str | None = TitleOption,
    gh_token: str | None = TokenOption,
    gh_user: str | None = UserOption,
    gh_pass: str | None = PassOption,
    gh_host: str | None = HostOption,
    gh_path_prefix: str | None = PathPrefixOption,
) -> None:
    """Branch, commit the transformed files, and open a pull request."""
    args = ActionArgs(
        repos=repos,
        org=org,
        files=files,
        branch_src=branch_src,
        branch_dest=branch_dest,
        allow_existing=allow_existing,
        transform=transform,
        output_format=output_format,
        msg=msg,
        title=title,
        gh_token=gh_token,
        gh_user=gh_user,
        gh_pass=gh_pass,
        gh_host=gh_host,
        gh_path_prefix=gh_path_prefix,
    )
    _execute(ctx, "branch-to-pr", args)


COMMANDS: dict[str, Callable[..., None]] = {
    "read": read,
    "branch": branch,
    "commit": commit,
    "pull-request": pull_request,
    "branch-to-pr": branch_to_pr,
}


__all__ = [
    "ACTIONS",
    "COMMANDS",
    "ActionArgs",
    "branch",
    "branch_to_pr",
    "build_forge_config",
    "build_run_options",
    "commit",
    "pull_request",
    "read",
    "run_action",
]
