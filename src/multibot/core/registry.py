"""Command registration.

Every public module under ``multibot.commands`` exposes a ``COMMANDS``
table mapping a command name to its handler. ``register_commands`` imports
those modules in name order and attaches each handler to the typer app.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from types import ModuleType

import typer

logger = logging.getLogger(__name__)

COMMANDS_PACKAGE = "multibot.commands"


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: Callable[..., None]


def iter_command_modules(package: str = COMMANDS_PACKAGE) -> Iterator[ModuleType]:
    root = importlib.import_module(package)
    for info in sorted(pkgutil.iter_modules(root.__path__), key=lambda i: i.name):
        if not info.name.startswith("_"):
            yield importlib.import_module(f"{package}.{info.name}")


def command_specs(module: ModuleType) -> list[CommandSpec]:
    table: Mapping[str, Callable[..., None]] = getattr(module, "COMMANDS", {})
    return [CommandSpec(name=name, handler=handler) for name, handler in table.items()]


def register_commands(app: typer.Typer, package: str = COMMANDS_PACKAGE) -> list[str]:
    """Attach every discovered command to ``app`` and return their names."""
    names: list[str] = []
    for module in iter_command_modules(package):
        specs = command_specs(module)
        if not specs:
            logger.debug("Command module %s declares no commands", module.__name__)
        for spec in specs:
            app.command(spec.name)(spec.handler)
            names.append(spec.name)
    return names


__all__ = ["CommandSpec", "command_specs", "iter_command_modules", "register_commands"]
