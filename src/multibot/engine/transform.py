"""Transform gate: apply the caller's per-file transform.

A transform is any callable taking a ``TransformInput`` and returning the
new file contents, or ``None`` to delete the file. Coroutine functions are
awaited. ``contents`` is ``None`` when the file does not exist yet.

Example transform module::

    def transform(file):
        if file.contents is None:
            return "created by multibot\\n"
        return file.contents.replace("danger", "DANGER")
"""

from __future__ import annotations

import importlib
import importlib.util
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from multibot.core.result import ConfigurationError, Err, MultibotError, Ok, Result, TransformError

DEFAULT_ATTRIBUTE = "transform"


@dataclass(frozen=True)
class TransformInput:
    repo: str
    file: str
    contents: str | None


Transform = Callable[[TransformInput], Union[str, None, Awaitable[Union[str, None]]]]


def identity_transform(file: TransformInput) -> str | None:
    """Default no-op transform."""
    return file.contents


async def apply_transform(
    transform: Transform, file: TransformInput
) -> Result[str | None, MultibotError]:
    context = {"path": f"{file.repo}/{file.file}"}
    try:
        value = transform(file)
        if inspect.isawaitable(value):
            value = await value
    except Exception as exc:
        return Err(TransformError(f"Transform failed: {exc!r}", context=context))

    if value is not None and not isinstance(value, str):
        return Err(
            TransformError(
                f"Transform returned {type(value).__name__}, expected str or None",
                context=context,
            )
        )
    return Ok(value)


def _split_spec(spec: str) -> tuple[str, str]:
    target, sep, attr = spec.rpartition(":")
    if sep and attr.isidentifier():
        return target, attr
    return spec, DEFAULT_ATTRIBUTE


def _import_target(target: str) -> object:
    path = Path(target).expanduser()
    if target.endswith(".py") or path.exists():
        if not path.is_file():
            raise ConfigurationError("Transform file not found", context={"transform": target})
        module_spec = importlib.util.spec_from_file_location(
            f"multibot_transform_{path.stem}", path
        )
        if module_spec is None or module_spec.loader is None:
            raise ConfigurationError("Unable to load transform", context={"transform": target})
        module = importlib.util.module_from_spec(module_spec)
        module_spec.loader.exec_module(module)
        return module
    return importlib.import_module(target)


def load_transform(spec: str | None) -> Transform:
    """Load a transform from ``path/to/file.py`` or ``package.module``.

    An optional ``:name`` suffix selects the callable; the default is
    ``transform``. No spec means the identity transform.
    """
    if not spec:
        return identity_transform

    target, attr = _split_spec(spec)
    try:
        module = _import_target(target)
    except ConfigurationError:
        raise
    except Exception as exc:
        raise ConfigurationError(
            f"Unable to import transform: {exc}", context={"transform": spec}
        ) from exc

    fn = getattr(module, attr, None)
    if not callable(fn):
        raise ConfigurationError(
            f"Transform module has no callable '{attr}'", context={"transform": spec}
        )
    return fn  # type: ignore[no-any-return]


__all__ = [
    "Transform",
    "TransformInput",
    "apply_transform",
    "identity_transform",
    "load_transform",
]
