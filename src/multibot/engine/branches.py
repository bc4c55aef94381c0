"""Branch manager: inspect and create destination branches across repositories."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from multibot.core.dag import FanOut, fan_out
from multibot.core.result import (
    Err,
    MultibotError,
    NotFoundError,
    Ok,
    PolicyViolation,
    ProgrammingError,
    Result,
)
from multibot.engine.models import DRY_RUN_CREATE_BRANCH_REF_SHA, BranchResult, RepoRef
from multibot.forge import ForgeClient

logger = logging.getLogger(__name__)


def head_ref(branch: str) -> str:
    """Short ref name for a branch, as used by the refs API."""
    return f"heads/{branch}"


async def get_ref(
    client: ForgeClient, repo: RepoRef, branch: str
) -> Result[str | None, MultibotError]:
    """Return the head sha of ``branch``, or None when the branch does not exist."""
    match await client.get_ref(repo, head_ref(branch)):
        case Ok(sha):
            return Ok(sha)
        case Err(NotFoundError()):
            return Ok(None)
        case Err(err):
            return Err(err.with_context(repo=repo.full_name, branch=branch))


async def _source_head(
    client: ForgeClient, repo: RepoRef, branch: str
) -> Result[tuple[RepoRef, str], MultibotError]:
    match await client.get_ref(repo, head_ref(branch)):
        case Ok(sha):
            return Ok((repo, sha))
        case Err(err):
            return Err(err.with_context(repo=repo.full_name, branch=branch))


async def _dest_head(
    client: ForgeClient, repo: RepoRef, branch: str
) -> Result[tuple[RepoRef, str | None], MultibotError]:
    match await get_ref(client, repo, branch):
        case Ok(sha):
            return Ok((repo, sha))
        case Err(err):
            return Err(err)


async def create_branches(
    client: ForgeClient,
    repos: Sequence[RepoRef],
    src: str,
    dest: str,
    *,
    allow_existing: bool,
    dry_run: bool,
) -> FanOut[BranchResult]:
    """Create ``dest`` from the head of ``src`` in every repository.

    All source and destination refs are resolved before any ref is created,
    so a single repository that already has ``dest`` (when existing branches
    are disallowed) stops the action with zero refs created anywhere.
    """
    sources, dests = await asyncio.gather(
        fan_out(repos, lambda repo: _source_head(client, repo, src)),
        fan_out(repos, lambda repo: _dest_head(client, repo, dest)),
    )
    if sources.error is not None:
        return FanOut.failed(sources.error)
    if dests.error is not None:
        return FanOut.failed(dests.error)

    src_heads = dict(sources.values)
    dest_heads = dict(dests.values)

    existing = {repo.full_name: sha for repo, sha in dest_heads.items() if sha is not None}
    if existing and not allow_existing:
        return FanOut.failed(
            PolicyViolation(
                "Found existing dest branch",
                context={"branch": dest, "repos": existing},
            )
        )

    async def _create(repo: RepoRef) -> Result[BranchResult, MultibotError]:
        if repo not in src_heads or repo not in dest_heads:
            return Err(ProgrammingError("No ref data for repo", context={"repo": repo.full_name}))

        existing_sha = dest_heads[repo]
        if existing_sha is not None:
            logger.warning("%s: branch %s already exists at %s", repo, dest, existing_sha)
            return Ok(BranchResult(repo, src, dest, dest_existed=True, head_sha=existing_sha))

        if dry_run:
            return Ok(
                BranchResult(
                    repo, src, dest, dest_existed=False, head_sha=DRY_RUN_CREATE_BRANCH_REF_SHA
                )
            )

        match await client.create_ref(repo, head_ref(dest), src_heads[repo]):
            case Ok(sha):
                logger.info("%s: created branch %s at %s", repo, dest, sha)
                return Ok(BranchResult(repo, src, dest, dest_existed=False, head_sha=sha))
            case Err(err):
                return Err(err.with_context(repo=repo.full_name, branch=dest))

    return await fan_out(repos, _create)


__all__ = ["create_branches", "get_ref", "head_ref"]
