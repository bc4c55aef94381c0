"""Commit synthesizer: turn transformed files into blobs, trees, commits and refs.

Per repository the pipeline is strictly::

    plan -> blobs -> tree -> commit -> ref (fast-forward only)

Repositories are independent of each other and run concurrently. Two tree
strategies exist:

- Sparse update (no deletes in the repo): post only created / changed
  entries with the branch tip as ``base_tree``; the forge merges in every
  path we do not mention.
- Full rebuild (any delete in the repo): fetch the complete recursive tree,
  drop deleted paths, rewrite updated ones, append creates, and post the
  result without a base tree. A truncated listing is never used.

The tree plan is computed (and checked against read-time blob shas) before
any blob is posted, so a consistency failure leaves no objects behind.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from multibot.core.dag import FanOut, fan_out
from multibot.core.result import (
    ConsistencyError,
    Err,
    MultibotError,
    Ok,
    ProgrammingError,
    Result,
)
from multibot.engine.branches import head_ref
from multibot.engine.models import (
    BLOB_MODE,
    DRY_RUN_CREATE_TREE_SHA,
    DRY_RUN_POST_BLOB_SHA,
    DRY_RUN_POST_COMMIT_SHA,
    DRY_RUN_UPDATE_TREE_SHA,
    BlobPost,
    CommitResult,
    FileResult,
    RepoRef,
    RepoTreeState,
    TreeEntry,
)
from multibot.forge import ForgeClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingEntry:
    """Tree slot waiting for the sha of a blob that has not been posted yet."""

    file: FileResult
    mode: str = BLOB_MODE


@dataclass(frozen=True)
class TreePlan:
    """New tree for one repository, minus the blob shas still to be posted."""

    state: RepoTreeState
    entries: list[TreeEntry | PendingEntry]

    @property
    def base_tree(self) -> str | None:
        return None if self.state.has_delete else self.state.parent_ref

    @property
    def pending(self) -> list[PendingEntry]:
        return [entry for entry in self.entries if isinstance(entry, PendingEntry)]

    @property
    def is_noop(self) -> bool:
        # A delete is always a change.
        return not self.state.has_delete and not self.pending

    def render(self, blob_shas: Mapping[str, str]) -> Result[list[TreeEntry], MultibotError]:
        """Fill pending slots with posted blob shas (keyed by file path)."""
        rendered: list[TreeEntry] = []
        for entry in self.entries:
            if isinstance(entry, TreeEntry):
                rendered.append(entry)
                continue
            sha = blob_shas.get(entry.file.file)
            if sha is None:
                return Err(
                    ProgrammingError(
                        "No posted blob for tree entry", context={"path": entry.file.path}
                    )
                )
            rendered.append(TreeEntry(path=entry.file.file, mode=entry.mode, type="blob", sha=sha))
        return Ok(rendered)


def _files_for(repo: RepoRef, files: Sequence[FileResult]) -> list[FileResult]:
    return [f for f in files if f.repo == repo]


def plan_tree(
    state: RepoTreeState, files: Sequence[FileResult]
) -> Result[TreePlan, MultibotError]:
    """Plan the new tree of ``state.repo`` for the given transformed files."""
    repo_files = _files_for(state.repo, files)

    if not state.has_delete:
        return Ok(TreePlan(state, [PendingEntry(f) for f in repo_files if f.needs_blob]))

    if state.tree is None:
        return Err(
            ProgrammingError(
                "Delete present but no tree fetched", context={"repo": state.repo.full_name}
            )
        )

    # Sub-tree entries are left out: nested blob paths recreate them, and an
    # old sub-tree sha would bring deleted files back.
    current = {entry.path: entry for entry in state.tree if entry.type != "tree"}
    changes = {f.file: f for f in repo_files if f.is_update or f.is_delete}
    mismatches: list[dict[str, str | None]] = []
    entries: list[TreeEntry | PendingEntry] = []

    for path, entry in current.items():
        change = changes.get(path)
        if change is None:
            entries.append(entry)
            continue
        if change.sha != entry.sha:
            mismatches.append({"path": path, "read": change.sha, "tree": entry.sha})
        if change.is_update:
            entries.append(PendingEntry(change, mode=entry.mode))

    for path, change in changes.items():
        if path not in current:
            mismatches.append({"path": path, "read": change.sha, "tree": None})

    for f in repo_files:
        if not f.is_create:
            continue
        if f.file in current:
            mismatches.append({"path": f.file, "read": None, "tree": current[f.file].sha})
        else:
            entries.append(PendingEntry(f))

    if mismatches:
        return Err(
            ConsistencyError(
                "Detected blob sha mismatches",
                context={"repo": state.repo.full_name, "mismatches": mismatches},
            )
        )
    return Ok(TreePlan(state, entries))


async def resolve_tree_state(
    client: ForgeClient,
    repo: RepoRef,
    files: Sequence[FileResult],
    branch: str,
) -> Result[RepoTreeState, MultibotError]:
    """Fetch the branch tip, plus the full tree when the repo has a delete."""
    has_delete = any(f.is_delete for f in _files_for(repo, files))

    match await client.get_ref(repo, head_ref(branch)):
        case Ok(tip):
            pass
        case Err(err):
            return Err(err.with_context(repo=repo.full_name, branch=branch))

    if not has_delete:
        return Ok(RepoTreeState(repo=repo, parent_ref=tip, tree=None, has_delete=False))

    match await client.get_tree(repo, tip, recursive=True):
        case Ok(listing):
            pass
        case Err(err):
            return Err(err.with_context(repo=repo.full_name, sha=tip))

    if listing.truncated:
        return Err(
            ConsistencyError(
                "Received truncated tree", context={"repo": repo.full_name, "sha": tip}
            )
        )
    return Ok(RepoTreeState(repo=repo, parent_ref=tip, tree=listing.tree, has_delete=True))


async def resolve_tree_states(
    client: ForgeClient,
    repos: Sequence[RepoRef],
    files: Sequence[FileResult],
    branch: str,
) -> FanOut[RepoTreeState]:
    """Resolve tree state for every repository; any failure fails the batch."""
    return await fan_out(repos, lambda repo: resolve_tree_state(client, repo, files, branch))


async def _post_blob(
    client: ForgeClient, file: FileResult, dry_run: bool
) -> Result[BlobPost, MultibotError]:
    if not file.needs_blob or file.new_content is None:
        return Ok(BlobPost(repo=file.repo, file=file.file, sha=None))

    if dry_run:
        return Ok(BlobPost(repo=file.repo, file=file.file, sha=DRY_RUN_POST_BLOB_SHA))

    match await client.create_blob(file.repo, file.new_content, "utf-8"):
        case Ok(sha):
            return Ok(BlobPost(repo=file.repo, file=file.file, sha=sha))
        case Err(err):
            return Err(err.with_context(path=file.path))


async def synthesize_commit(
    client: ForgeClient,
    state: RepoTreeState,
    files: Sequence[FileResult],
    branch: str,
    message: str,
    *,
    dry_run: bool,
) -> Result[CommitResult, MultibotError]:
    """Run the blob -> tree -> commit -> ref pipeline for one repository."""
    repo = state.repo
    repo_files = _files_for(repo, files)

    match plan_tree(state, files):
        case Ok(plan):
            pass
        case Err(err):
            return Err(err)

    if plan.is_noop:
        logger.info("%s: no changes, skipping commit", repo)
        return Ok(
            CommitResult(
                repo=repo,
                parent_sha=state.parent_ref,
                new_tree_sha=None,
                commit_sha=None,
                is_noop=True,
                blobs=[BlobPost(repo=repo, file=f.file, sha=None) for f in repo_files],
            )
        )

    blobs = await fan_out(repo_files, lambda f: _post_blob(client, f, dry_run))
    if blobs.error is not None:
        return Err(blobs.error)
    blob_shas = {b.file: b.sha for b in blobs.values if b.sha is not None}

    match plan.render(blob_shas):
        case Ok(entries):
            pass
        case Err(err):
            return Err(err)

    if dry_run:
        tree_sha = DRY_RUN_CREATE_TREE_SHA if state.has_delete else DRY_RUN_UPDATE_TREE_SHA
    else:
        match await client.create_tree(repo, entries, plan.base_tree):
            case Ok(tree_sha):
                pass
            case Err(err):
                return Err(err.with_context(repo=repo.full_name, step="tree"))

    if dry_run:
        commit_sha = DRY_RUN_POST_COMMIT_SHA
    else:
        match await client.create_commit(repo, message, tree_sha, [state.parent_ref]):
            case Ok(commit_sha):
                pass
            case Err(err):
                return Err(err.with_context(repo=repo.full_name, step="commit"))

        match await client.update_ref(repo, head_ref(branch), commit_sha, force=False):
            case Ok(_):
                logger.info("%s: %s advanced to %s", repo, branch, commit_sha)
            case Err(err):
                return Err(err.with_context(repo=repo.full_name, step="ref", branch=branch))

    return Ok(
        CommitResult(
            repo=repo,
            parent_sha=state.parent_ref,
            new_tree_sha=tree_sha,
            commit_sha=commit_sha,
            is_noop=False,
            blobs=blobs.values,
        )
    )


async def synthesize_commits(
    client: ForgeClient,
    states: Sequence[RepoTreeState],
    files: Sequence[FileResult],
    branch: str,
    message: str,
    *,
    dry_run: bool,
) -> FanOut[CommitResult]:
    """Commit to every repository concurrently; one failure never stops siblings."""
    return await fan_out(
        states,
        lambda state: synthesize_commit(client, state, files, branch, message, dry_run=dry_run),
    )


__all__ = [
    "PendingEntry",
    "TreePlan",
    "plan_tree",
    "resolve_tree_state",
    "resolve_tree_states",
    "synthesize_commit",
    "synthesize_commits",
]
