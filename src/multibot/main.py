from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Any

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging, stderr_console
from .core.registry import register_commands

app = typer.Typer(
    help="multibot: read, transform, branch, commit and open pull requests across many repos."
)
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger


def _with_dry_run(config: AppConfig) -> AppConfig:
    run = config.run.model_copy(update={"dry_run": True})
    return config.model_copy(update={"run": run})


def _safe_mode_panel(meta: ConfigLoadResult) -> Panel:
    return Panel(
        f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
        f"Failed to load {meta.path}:\n{escape(meta.error or '')}\n\n"
        f"[yellow]Using default settings.[/yellow]",
        border_style="red",
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a multibot config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Skip / simulate all mutating actions."
    ),
) -> None:
    # load_config never raises; a broken file yields defaults plus meta.error.
    loaded_config, meta = load_config(config_path=config)
    if dry_run:
        loaded_config = _with_dry_run(loaded_config)

    app_logger = setup_logging(level=loaded_config.log_level, verbose=verbose)
    ctx.obj = AppState(config=loaded_config, config_meta=meta, logger=app_logger)

    if meta.error:
        stderr_console.print(_safe_mode_panel(meta))
        return
    app_logger.debug(
        "Loaded configuration from %s (env overrides: %s)",
        meta.path,
        sorted(meta.env_overrides) or "none",
    )


def _flatten(data: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            yield from _flatten(value, prefix=f"{name}.")
        else:
            yield name, value


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration (secrets masked) and where it came from."""
    state: AppState = ctx.obj
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_column("Source", style="dim", no_wrap=True)

    # mode="json" renders SecretStr fields as asterisks.
    for key, value in _flatten(state.config.model_dump(mode="json")):
        source = "env" if key in meta.env_overrides else ""
        table.add_row(key, escape(str(value)), source)
    console.print(table)

    loaded = "yes" if meta.file_loaded else "no (using defaults + env)"
    console.print(f"[dim]Path: {meta.path} - file loaded: {loaded}[/dim]")


@app.command("version")
def show_version() -> None:
    """Print the multibot version."""
    console.print(__version__)


def _register_commands_with_timing() -> None:
    start = perf_counter()
    names = register_commands(app)
    logger.debug("Registered %d commands in %.3f seconds", len(names), perf_counter() - start)


_register_commands_with_timing()


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
