"""Pull request manager."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from multibot.core.dag import FanOut, fan_out
from multibot.core.result import Err, MultibotError, Ok, PullRequestExistsError, Result
from multibot.engine.models import (
    DRY_RUN_CREATE_PR_HTML_URL,
    DRY_RUN_CREATE_PR_SHA,
    PullRequestResult,
    RepoRef,
)
from multibot.forge import ForgeClient

logger = logging.getLogger(__name__)


async def create_pull_request(
    client: ForgeClient,
    repo: RepoRef,
    src: str,
    dest: str,
    title: str,
    body: str,
    *,
    allow_existing: bool,
    dry_run: bool,
) -> Result[PullRequestResult, MultibotError]:
    """Open a pull request merging ``dest`` into ``src``.

    ``src`` is the base branch and ``dest`` (the branch the changes were
    committed to) is the head. When the forge says a pull request already
    exists for the pair, ``allow_existing`` turns that into a result with
    ``existed=True`` and no url or head sha.
    """
    if dry_run:
        return Ok(
            PullRequestResult(
                repo=repo,
                url=DRY_RUN_CREATE_PR_HTML_URL,
                existed=False,
                head_sha=DRY_RUN_CREATE_PR_SHA,
            )
        )

    match await client.create_pull_request(repo, title, body, base=src, head=dest):
        case Ok(pr):
            logger.info("%s: opened %s", repo, pr.url)
            return Ok(PullRequestResult(repo=repo, url=pr.url, existed=False, head_sha=pr.head_sha))
        case Err(PullRequestExistsError() as err) if allow_existing:
            logger.warning("%s: %s", repo, err.message)
            return Ok(PullRequestResult(repo=repo, url=None, existed=True, head_sha=None))
        case Err(err):
            return Err(err.with_context(repo=repo.full_name, base=src, head=dest))


async def create_pull_requests(
    client: ForgeClient,
    repos: Sequence[RepoRef],
    src: str,
    dest: str,
    title: str,
    body: str,
    *,
    allow_existing: bool,
    dry_run: bool,
) -> FanOut[PullRequestResult]:
    return await fan_out(
        repos,
        lambda repo: create_pull_request(
            client,
            repo,
            src,
            dest,
            title,
            body,
            allow_existing=allow_existing,
            dry_run=dry_run,
        ),
    )


__all__ = ["create_pull_request", "create_pull_requests"]
