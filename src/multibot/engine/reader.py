"""Content reader: fetch files across repositories and run the transform."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Sequence

from multibot.core.dag import FanOut, fan_out
from multibot.core.result import (
    Err,
    MultibotError,
    NotFoundError,
    Ok,
    PolicyViolation,
    Result,
)
from multibot.engine.models import FileResult, RepoRef
from multibot.engine.transform import Transform, TransformInput, apply_transform
from multibot.forge import ForgeClient

logger = logging.getLogger(__name__)


def decode_content(raw: str) -> str:
    """Decode a base64 content payload as UTF-8 text."""
    try:
        return base64.b64decode(raw).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise PolicyViolation(f"File is not UTF-8 text: {exc}") from exc


async def read_file(
    client: ForgeClient,
    repo: RepoRef,
    file: str,
    ref: str,
    transform: Transform,
) -> Result[FileResult, MultibotError]:
    """Read one file at ``ref`` and apply the transform.

    A missing file (or repository) is not an error: it yields
    ``orig_content=None``, making the file a creation candidate.
    """
    path = f"{repo.full_name}/{file}"
    sha: str | None = None
    orig: str | None = None

    match await client.get_content(repo, file, ref):
        case Ok(payload):
            sha = payload.sha
            try:
                orig = decode_content(payload.content)
            except PolicyViolation as exc:
                return Err(exc.with_context(path=path))
        case Err(NotFoundError()):
            logger.debug("%s not found at %s; treating as create", path, ref)
        case Err(err):
            return Err(err.with_context(path=path))

    transform_input = TransformInput(repo=repo.full_name, file=file, contents=orig)
    match await apply_transform(transform, transform_input):
        case Err(err):
            return Err(err)
        case Ok(new):
            pass

    try:
        return Ok(
            FileResult(repo=repo, file=file, orig_content=orig, new_content=new, sha=sha, ref=ref)
        )
    except PolicyViolation as exc:
        return Err(exc)


async def read_files(
    client: ForgeClient,
    repos: Sequence[RepoRef],
    files: Sequence[str],
    ref: str,
    transform: Transform,
) -> FanOut[FileResult]:
    """Read every (repo, file) pair at ``ref`` concurrently, repo-major order."""
    lookups = [(repo, file) for repo in repos for file in files]
    logger.info("Reading %d file(s) across %d repo(s) at %s", len(lookups), len(repos), ref)
    return await fan_out(
        lookups, lambda lookup: read_file(client, lookup[0], lookup[1], ref, transform)
    )


__all__ = ["decode_content", "read_file", "read_files"]
