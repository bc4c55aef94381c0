"""Orchestrator: one entry point per action, each returning an ActionOutcome.

Actions and the stages they run:

    read          reader
    branch        branches
    commit        reader (destination branch) -> commits
    pull-request  pulls
    branch-to-pr  branch -> commit -> pull-request   (StageGraph)

Every mutating action refuses a protected destination branch before any
remote call is made.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from multibot.core.dag import FanOut, StageGraph, run_stages
from multibot.core.result import (
    ConfigurationError,
    Err,
    MultibotError,
    Ok,
    PolicyViolation,
    Result,
)
from multibot.engine.branches import create_branches
from multibot.engine.commits import resolve_tree_states, synthesize_commits
from multibot.engine.models import (
    ActionOutcome,
    BranchInfo,
    BranchResult,
    CommitInfo,
    CommitResult,
    FileResult,
    PullRequestInfo,
    PullRequestResult,
    RepoRef,
    ResultRecord,
)
from multibot.engine.pulls import create_pull_requests
from multibot.engine.reader import read_files
from multibot.engine.transform import Transform, identity_transform
from multibot.forge import ForgeClient

logger = logging.getLogger(__name__)

BRANCH_TO_PR_STAGES = ("branch", "commit", "pull-request")


def normalize_files(files: Iterable[str]) -> list[str]:
    """Strip leading ``./`` and ``/`` from repository paths and drop duplicates."""
    normalized: list[str] = []
    for file in files:
        path = file.strip()
        while path.startswith("./"):
            path = path[2:]
        path = path.lstrip("/")
        if path and path not in normalized:
            normalized.append(path)
    return normalized


@dataclass(frozen=True)
class RunOptions:
    """Inputs shared by every action of one invocation."""

    repos: Sequence[RepoRef]
    files: Sequence[str] = ()
    branch_src: str = "master"
    branch_dest: str | None = None
    allow_existing: bool = False
    dry_run: bool = False
    message: str | None = None
    title: str | None = None
    protected_branches: Sequence[str] = field(default_factory=lambda: ["master"])

    @property
    def pr_title(self) -> str:
        """Explicit title, or the first line of the commit message."""
        if self.title:
            return self.title
        lines = (self.message or "").strip().splitlines()
        return lines[0] if lines else ""

    @property
    def pr_body(self) -> str:
        return self.message or ""


@dataclass(frozen=True)
class _Target:
    dest: str
    message: str


def _record(repo: RepoRef | str, **sections: Any) -> ResultRecord:
    # Only populated sections are passed, so the rest stay unset in JSON output.
    name = repo.full_name if isinstance(repo, RepoRef) else repo
    return ResultRecord(repo=name, **{k: v for k, v in sections.items() if v is not None})


class Multibot:
    """Run actions against many repositories through one forge client."""

    def __init__(
        self,
        client: ForgeClient,
        options: RunOptions,
        transform: Transform = identity_transform,
    ) -> None:
        self.client = client
        self.options = options
        self.transform = transform

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _preflight(self, *, needs_message: bool) -> Result[_Target, MultibotError]:
        opts = self.options
        dest = opts.branch_dest
        if not dest:
            return Err(ConfigurationError("Must specify a destination branch"))
        if dest in opts.protected_branches:
            return Err(
                PolicyViolation("Refusing to write to protected branch", context={"branch": dest})
            )
        if needs_message and not opts.message:
            return Err(ConfigurationError("Must specify a commit message"))
        return Ok(_Target(dest=dest, message=opts.message or ""))

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _branch_stage(self, dest: str) -> FanOut[BranchResult]:
        opts = self.options
        return await create_branches(
            self.client,
            opts.repos,
            opts.branch_src,
            dest,
            allow_existing=opts.allow_existing,
            dry_run=opts.dry_run,
        )

    async def _commit_stage(self, read_ref: str, target: str, message: str) -> FanOut[ResultRecord]:
        opts = self.options

        reads = await read_files(self.client, opts.repos, opts.files, read_ref, self.transform)
        if reads.error is not None:
            return FanOut.failed(
                reads.error, self._commit_records(reads.values, read_ref, target, None)
            )

        # Whole-batch gate: nothing is posted anywhere unless every repo resolved.
        states = await resolve_tree_states(self.client, opts.repos, reads.values, target)
        if states.error is not None:
            return FanOut.failed(
                states.error, self._commit_records(reads.values, read_ref, target, None)
            )

        commits = await synthesize_commits(
            self.client, states.values, reads.values, target, message, dry_run=opts.dry_run
        )
        records = self._commit_records(reads.values, read_ref, target, commits.values)
        return FanOut(values=records, error=commits.error)

    async def _pull_request_stage(self, dest: str) -> FanOut[PullRequestResult]:
        opts = self.options
        return await create_pull_requests(
            self.client,
            opts.repos,
            opts.branch_src,
            dest,
            opts.pr_title,
            opts.pr_body,
            allow_existing=opts.allow_existing,
            dry_run=opts.dry_run,
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _read_record(self, file: FileResult) -> ResultRecord:
        return _record(
            file.repo,
            file=file.file,
            branch=BranchInfo(src=file.ref),
            content=file.content_info(),
            commit=CommitInfo(sha=file.sha),
        )

    def _commit_records(
        self,
        files: Sequence[FileResult],
        read_ref: str,
        target: str,
        commits: Sequence[CommitResult] | None,
    ) -> list[ResultRecord]:
        """One record per file; ``commit.sha`` is the posted blob sha.

        Files of repositories that did not commit carry no commit section.
        """
        commits = commits or []
        committed = {commit.repo for commit in commits}
        blob_shas = {
            (commit.repo, blob.file): blob.sha for commit in commits for blob in commit.blobs
        }
        return [
            _record(
                f.repo,
                file=f.file,
                branch=BranchInfo(src=read_ref, dest=target),
                content=f.content_info(),
                commit=(
                    CommitInfo(sha=blob_shas.get((f.repo, f.file))) if f.repo in committed else None
                ),
            )
            for f in files
        ]

    def _branch_record(self, result: BranchResult) -> ResultRecord:
        return _record(
            result.repo,
            branch=BranchInfo(
                src=result.src_branch, dest=result.dest_branch, dest_exists=result.dest_existed
            ),
            commit=CommitInfo(sha=result.head_sha),
        )

    def _pull_request_record(self, result: PullRequestResult, dest: str) -> ResultRecord:
        return _record(
            result.repo,
            branch=BranchInfo(src=self.options.branch_src, dest=dest),
            commit=CommitInfo(sha=result.head_sha),
            pull_request=PullRequestInfo(url=result.url, exists=result.existed),
        )

    def _splice(
        self,
        dest: str,
        branches: Sequence[BranchResult],
        records: Sequence[ResultRecord],
        pulls: Sequence[PullRequestResult],
    ) -> list[ResultRecord]:
        """Attach per-repo branch and pull request info to the commit records."""
        dest_exists = {b.repo.full_name: b.dest_existed for b in branches}
        pull_info = {p.repo.full_name: PullRequestInfo(url=p.url, exists=p.existed) for p in pulls}
        return [
            _record(
                record.repo,
                file=record.file,
                branch=BranchInfo(
                    src=self.options.branch_src,
                    dest=dest,
                    dest_exists=dest_exists.get(record.repo),
                ),
                content=record.content,
                commit=record.commit,
                pull_request=pull_info.get(record.repo),
            )
            for record in records
        ]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def read(self) -> ActionOutcome:
        opts = self.options
        reads = await read_files(
            self.client, opts.repos, opts.files, opts.branch_src, self.transform
        )
        return ActionOutcome(
            action="read",
            records=[self._read_record(f) for f in reads.values],
            error=reads.error,
        )

    async def branch(self) -> ActionOutcome:
        match self._preflight(needs_message=False):
            case Err(error):
                return ActionOutcome(action="branch", error=error)
            case Ok(target):
                pass

        branches = await self._branch_stage(target.dest)
        return ActionOutcome(
            action="branch",
            records=[self._branch_record(b) for b in branches.values],
            error=branches.error,
        )

    async def commit(self) -> ActionOutcome:
        """Read from the destination branch, transform, and commit back to it.

        Reading the destination (not the source) means a second run applies
        the transform to already-committed content.
        """
        match self._preflight(needs_message=True):
            case Err(error):
                return ActionOutcome(action="commit", error=error)
            case Ok(target):
                pass

        outcome = await self._commit_stage(target.dest, target.dest, target.message)
        return ActionOutcome(action="commit", records=outcome.values, error=outcome.error)

    async def pull_request(self) -> ActionOutcome:
        match self._preflight(needs_message=True):
            case Err(error):
                return ActionOutcome(action="pull-request", error=error)
            case Ok(target):
                pass

        pulls = await self._pull_request_stage(target.dest)
        return ActionOutcome(
            action="pull-request",
            records=[self._pull_request_record(p, target.dest) for p in pulls.values],
            error=pulls.error,
        )

    async def branch_to_pr(self) -> ActionOutcome:
        """Branch, commit, and open a pull request; each stage gates the next.

        In dry-run the destination branch is never created, so the commit
        stage reads from and targets the source branch instead.
        """
        match self._preflight(needs_message=True):
            case Err(error):
                return ActionOutcome(action="branch-to-pr", error=error)
            case Ok(target):
                pass

        commit_ref = self.options.branch_src if self.options.dry_run else target.dest

        async def _branch(_: Any) -> FanOut[Any]:
            return await self._branch_stage(target.dest)

        async def _commit(_: Any) -> FanOut[Any]:
            return await self._commit_stage(commit_ref, commit_ref, target.message)

        async def _pull_request(_: Any) -> FanOut[Any]:
            return await self._pull_request_stage(target.dest)

        run = await run_stages(
            StageGraph.chain(*BRANCH_TO_PR_STAGES),
            {"branch": _branch, "commit": _commit, "pull-request": _pull_request},
        )
        if run.failed_stage:
            logger.warning("branch-to-pr stopped at stage %s", run.failed_stage)

        branches: FanOut[BranchResult] = run.results.get("branch", FanOut())
        commits: FanOut[ResultRecord] | None = run.results.get("commit")
        pulls: FanOut[PullRequestResult] = run.results.get("pull-request", FanOut())

        if commits is None:
            records = [self._branch_record(b) for b in branches.values]
        else:
            records = self._splice(target.dest, branches.values, commits.values, pulls.values)
        return ActionOutcome(action="branch-to-pr", records=records, error=run.error)


__all__ = ["BRANCH_TO_PR_STAGES", "Multibot", "RunOptions", "normalize_files"]
