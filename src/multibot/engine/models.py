"""Data model for multi-repository change synthesis.

All entities are built fresh for one action invocation and discarded after
output is rendered:

- RepoRef: an ``org/name`` repository coordinate
- FileResult: original and transformed content of one file in one repo
- BlobPost / TreeEntry / RepoTreeState / CommitResult: git object plumbing
- BranchResult / PullRequestResult: per-repo outcomes of the other actions
- ResultRecord: the JSON-friendly superset record handed to formatters
- ActionOutcome: the ``(error, records)`` pair every action returns
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from multibot.core.result import MultibotError, PolicyViolation

# Dry-run sentinels stand in for forge-assigned values of mutating calls.
DRY_RUN_CREATE_BRANCH_REF_SHA = "DRY_RUN_CREATE_BRANCH_REF_SHA"
DRY_RUN_POST_BLOB_SHA = "DRY_RUN_POST_BLOB_SHA"
DRY_RUN_UPDATE_TREE_SHA = "DRY_RUN_UPDATE_TREE_SHA"
DRY_RUN_CREATE_TREE_SHA = "DRY_RUN_CREATE_TREE_SHA"
DRY_RUN_POST_COMMIT_SHA = "DRY_RUN_POST_COMMIT_SHA"
DRY_RUN_CREATE_PR_HTML_URL = "DRY_RUN_CREATE_PR_HTML_URL"
DRY_RUN_CREATE_PR_SHA = "DRY_RUN_CREATE_PR_SHA"

BLOB_MODE = "100644"


class RepoRef(BaseModel):
    """Repository coordinate parsed once from ``org/repo``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    org: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    @classmethod
    def parse(cls, spec: str) -> RepoRef:
        parts = spec.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise PolicyViolation(
                "Repository must be of the form org/repo", context={"repo": spec}
            )
        return cls(org=parts[0], name=parts[1])

    @property
    def full_name(self) -> str:
        return f"{self.org}/{self.name}"

    def __str__(self) -> str:
        return self.full_name


def resolve_repos(repos: Iterable[str], org: str | None = None) -> list[RepoRef]:
    """Qualify bare repository names with ``org`` and parse them.

    Duplicates are dropped, keeping first-seen order.
    """
    resolved: list[RepoRef] = []
    for spec in repos:
        if "/" not in spec:
            if not org:
                raise PolicyViolation(
                    "Must specify org in --org or repo name", context={"repo": spec}
                )
            spec = f"{org}/{spec}"
        ref = RepoRef.parse(spec)
        if ref not in resolved:
            resolved.append(ref)
    return resolved


class FileAction(Enum):
    """Classification of one transformed file."""

    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class FileResult:
    """Original and transformed content of one file.

    ``orig_content is None`` means the file does not exist at ``ref``;
    ``new_content is None`` means the transform deletes it. Both at once is
    rejected at construction.
    """

    repo: RepoRef
    file: str
    orig_content: str | None
    new_content: str | None
    sha: str | None
    ref: str

    def __post_init__(self) -> None:
        if self.orig_content is None and self.new_content is None:
            raise PolicyViolation("Cannot have both create + delete", context={"path": self.path})

    @property
    def path(self) -> str:
        return f"{self.repo.full_name}/{self.file}"

    @property
    def action(self) -> FileAction:
        if self.orig_content is None:
            return FileAction.CREATE
        if self.new_content is None:
            return FileAction.DELETE
        if self.orig_content == self.new_content:
            return FileAction.NOOP
        return FileAction.UPDATE

    @property
    def is_create(self) -> bool:
        return self.action is FileAction.CREATE

    @property
    def is_update(self) -> bool:
        return self.action is FileAction.UPDATE

    @property
    def is_delete(self) -> bool:
        return self.action is FileAction.DELETE

    @property
    def is_noop(self) -> bool:
        return self.action is FileAction.NOOP

    @property
    def needs_blob(self) -> bool:
        return self.action in (FileAction.CREATE, FileAction.UPDATE)

    def content_info(self) -> ContentInfo:
        return ContentInfo(
            orig=self.orig_content,
            new=self.new_content,
            create=self.is_create,
            update=self.is_update,
            delete=self.is_delete,
        )


@dataclass(frozen=True)
class BlobPost:
    """Content address of a posted blob; ``sha`` is None for noop/delete entries."""

    repo: RepoRef
    file: str
    sha: str | None


class TreeEntry(BaseModel):
    """One addressable entry of a git tree object."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    path: str
    mode: str = BLOB_MODE
    type: Literal["blob", "tree", "commit"] = "blob"
    sha: str

    def to_payload(self) -> dict[str, str]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


@dataclass(frozen=True)
class RepoTreeState:
    """Branch tip of one repository, with the full tree when it is needed.

    ``tree`` is only populated (complete, non-truncated) when the batch
    deletes a file in this repository.
    """

    repo: RepoRef
    parent_ref: str
    tree: list[TreeEntry] | None
    has_delete: bool


@dataclass(frozen=True)
class CommitResult:
    repo: RepoRef
    parent_sha: str
    new_tree_sha: str | None
    commit_sha: str | None
    is_noop: bool
    blobs: list[BlobPost] = field(default_factory=list)


@dataclass(frozen=True)
class BranchResult:
    repo: RepoRef
    src_branch: str
    dest_branch: str
    dest_existed: bool
    head_sha: str | None


@dataclass(frozen=True)
class PullRequestResult:
    repo: RepoRef
    url: str | None
    existed: bool
    head_sha: str | None


# ---------------------------------------------------------------------------
# Output records
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BranchInfo(_Record):
    src: str | None = None
    dest: str | None = None
    dest_exists: bool | None = None


class ContentInfo(_Record):
    orig: str | None
    new: str | None
    create: bool
    update: bool
    delete: bool


class CommitInfo(_Record):
    sha: str | None = None


class PullRequestInfo(_Record):
    url: str | None = None
    exists: bool = False


class ResultRecord(_Record):
    """Superset output record; populated sections depend on the action."""

    repo: str
    file: str | None = None
    branch: BranchInfo | None = None
    content: ContentInfo | None = None
    commit: CommitInfo | None = None
    pull_request: PullRequestInfo | None = None

    @property
    def display_path(self) -> str:
        return f"{self.repo}/{self.file}" if self.file else self.repo

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


@dataclass
class ActionOutcome:
    """Result of one action: the first error (if any) plus gathered records."""

    action: str
    records: list[ResultRecord] = field(default_factory=list)
    error: MultibotError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


__all__ = [
    "ActionOutcome",
    "BLOB_MODE",
    "BlobPost",
    "BranchInfo",
    "BranchResult",
    "CommitInfo",
    "CommitResult",
    "ContentInfo",
    "DRY_RUN_CREATE_BRANCH_REF_SHA",
    "DRY_RUN_CREATE_PR_HTML_URL",
    "DRY_RUN_CREATE_PR_SHA",
    "DRY_RUN_CREATE_TREE_SHA",
    "DRY_RUN_POST_BLOB_SHA",
    "DRY_RUN_POST_COMMIT_SHA",
    "DRY_RUN_UPDATE_TREE_SHA",
    "FileAction",
    "FileResult",
    "PullRequestInfo",
    "PullRequestResult",
    "RepoRef",
    "RepoTreeState",
    "ResultRecord",
    "resolve_repos",
]
