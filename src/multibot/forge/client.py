from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, nullcontext
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from multibot.core.config import ForgeConfig
from multibot.core.result import (
    ConfigurationError,
    Err,
    FastForwardRejected,
    MultibotError,
    NotFoundError,
    Ok,
    PullRequestExistsError,
    RateLimitError,
    RemoteError,
    Result,
)
from multibot.engine.models import RepoRef, TreeEntry

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github.v3+json"
PR_EXISTS_PREFIX = "A pull request already exists for"


@dataclass(frozen=True)
class FileContent:
    """Raw file payload: base64 ``content`` plus the blob ``sha``."""

    content: str
    sha: str


@dataclass(frozen=True)
class TreeListing:
    tree: list[TreeEntry]
    truncated: bool


@dataclass(frozen=True)
class PullRequestRef:
    url: str | None
    head_sha: str | None


class ForgeClient(Protocol):
    """Logical operations the engine needs from a git forge.

    ``ref`` arguments are short ref names (``heads/<branch>``). Every method
    returns ``Err(NotFoundError)`` for a missing object and another
    ``MultibotError`` for any other failure.
    """

    async def get_content(
        self, repo: RepoRef, path: str, ref: str
    ) -> Result[FileContent, MultibotError]: ...

    async def get_ref(self, repo: RepoRef, ref: str) -> Result[str, MultibotError]: ...

    async def create_ref(self, repo: RepoRef, ref: str, sha: str) -> Result[str, MultibotError]: ...

    async def create_blob(
        self, repo: RepoRef, content: str, encoding: str = "utf-8"
    ) -> Result[str, MultibotError]: ...

    async def get_tree(
        self, repo: RepoRef, sha: str, recursive: bool = True
    ) -> Result[TreeListing, MultibotError]: ...

    async def create_tree(
        self, repo: RepoRef, entries: list[TreeEntry], base_tree: str | None
    ) -> Result[str, MultibotError]: ...

    async def create_commit(
        self, repo: RepoRef, message: str, tree: str, parents: list[str]
    ) -> Result[str, MultibotError]: ...

    async def update_ref(
        self, repo: RepoRef, ref: str, sha: str, force: bool = False
    ) -> Result[str, MultibotError]: ...

    async def create_pull_request(
        self, repo: RepoRef, title: str, body: str, base: str, head: str
    ) -> Result[PullRequestRef, MultibotError]: ...


def _error_detail(response: httpx.Response) -> tuple[str, list[str]]:
    """Return the forge's top-level message and any nested validation messages."""
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase, []

    if not isinstance(payload, dict):
        return str(payload), []

    nested = [
        str(item.get("message"))
        for item in payload.get("errors") or []
        if isinstance(item, dict) and item.get("message")
    ]
    return str(payload.get("message") or response.reason_phrase), nested


def error_from_response(response: httpx.Response, context: dict[str, Any]) -> MultibotError:
    """Translate a non-2xx forge response into the error taxonomy."""
    status = response.status_code
    message, nested = _error_detail(response)
    ctx = {**context, "status": status}

    if status == 404:
        return NotFoundError(f"Not found: {message}", context=ctx)

    if status == 403:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            ctx["rate_limit_remaining"] = remaining
        reset = response.headers.get("X-RateLimit-Reset")
        if remaining == "0" and reset:
            ctx["rate_limit_reset"] = reset
        return RateLimitError(
            f"GitHub API FORBIDDEN Error (likely over rate limit): {message}",
            status=status,
            context=ctx,
        )

    if status == 422 and any(m.startswith(PR_EXISTS_PREFIX) for m in nested):
        return PullRequestExistsError(nested[0], status=status, context=ctx)

    detail = "; ".join([message, *nested])
    return RemoteError(f"GitHub API Error: {detail}", status=status, context=ctx)


class GitHubClient:
    """Async GitHub REST v3 client built on httpx.

    Authenticates with a token, or with user + password. Use as an async
    context manager so the underlying connection pool is closed.
    """

    def __init__(
        self,
        config: ForgeConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": GITHUB_ACCEPT, "User-Agent": config.user_agent}
        auth: httpx.Auth | None = None

        if config.token is not None:
            headers["Authorization"] = f"token {config.token.get_secret_value()}"
        elif config.user and config.password is not None:
            auth = httpx.BasicAuth(config.user, config.password.get_secret_value())
        else:
            raise ConfigurationError("Must specify forge user + password or token")

        self._config = config
        self._http = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            auth=auth,
            timeout=config.timeout,
            transport=transport,
        )
        self._slots = asyncio.Semaphore(config.max_concurrency) if config.max_concurrency else None

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @asynccontextmanager
    async def _slot(self) -> AsyncIterator[None]:
        async with self._slots if self._slots is not None else nullcontext():
            yield

    async def _request(
        self,
        method: str,
        url: str,
        *,
        context: dict[str, Any],
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> Result[Any, MultibotError]:
        logger.debug("%s %s", method, url)
        try:
            async with self._slot():
                response = await self._http.request(method, url, json=json, params=params)
        except httpx.HTTPError as exc:
            return Err(
                RemoteError(f"{method} {url} failed: {exc}", context={**context, "url": url})
            )

        if not response.is_success:
            return Err(error_from_response(response, context))
        if not response.content:
            return Ok({})
        try:
            return Ok(response.json())
        except ValueError as exc:
            return Err(
                RemoteError(
                    f"{method} {url} returned a non-JSON body: {exc}",
                    status=response.status_code,
                    context={**context, "url": url},
                )
            )

    @staticmethod
    def _repo_url(repo: RepoRef, suffix: str) -> str:
        return f"/repos/{quote(repo.org)}/{quote(repo.name)}/{suffix}"

    async def get_content(
        self, repo: RepoRef, path: str, ref: str
    ) -> Result[FileContent, MultibotError]:
        context = {"repo": repo.full_name, "file": path, "ref": ref}
        match await self._request(
            "GET",
            self._repo_url(repo, f"contents/{quote(path)}"),
            params={"ref": ref},
            context=context,
        ):
            case Err(err):
                return Err(err)
            case Ok(payload):
                pass

        if not isinstance(payload, dict) or payload.get("type", "file") != "file":
            return Err(RemoteError("Path is not a regular file", context=context))
        if payload.get("encoding", "base64") == "base64":
            return Ok(FileContent(content=payload.get("content") or "", sha=payload["sha"]))
        # Files over 1 MB come back with encoding "none" and no inline content.
        return await self._get_blob(repo, payload["sha"], context)

    async def _get_blob(
        self, repo: RepoRef, sha: str, context: dict[str, Any]
    ) -> Result[FileContent, MultibotError]:
        context = {**context, "sha": sha}
        match await self._request(
            "GET", self._repo_url(repo, f"git/blobs/{quote(sha)}"), context=context
        ):
            case Err(NotFoundError()):
                return Err(
                    RemoteError("Blob named by the contents API is missing", context=context)
                )
            case Err(err):
                return Err(err)
            case Ok(blob):
                pass

        if not isinstance(blob, dict) or blob.get("encoding") != "base64":
            return Err(RemoteError("Blob content is not available as base64", context=context))
        return Ok(FileContent(content=blob.get("content") or "", sha=sha))

    async def get_ref(self, repo: RepoRef, ref: str) -> Result[str, MultibotError]:
        match await self._request(
            "GET",
            self._repo_url(repo, f"git/ref/{quote(ref)}"),
            context={"repo": repo.full_name, "ref": ref},
        ):
            case Ok(payload):
                return Ok(payload["object"]["sha"])
            case Err(err):
                return Err(err)

    async def create_ref(self, repo: RepoRef, ref: str, sha: str) -> Result[str, MultibotError]:
        match await self._request(
            "POST",
            self._repo_url(repo, "git/refs"),
            json={"ref": f"refs/{ref}", "sha": sha},
            context={"repo": repo.full_name, "ref": ref},
        ):
            case Ok(payload):
                return Ok(payload["object"]["sha"])
            case Err(err):
                return Err(err)

    async def create_blob(
        self, repo: RepoRef, content: str, encoding: str = "utf-8"
    ) -> Result[str, MultibotError]:
        match await self._request(
            "POST",
            self._repo_url(repo, "git/blobs"),
            json={"content": content, "encoding": encoding},
            context={"repo": repo.full_name},
        ):
            case Ok(payload):
                return Ok(payload["sha"])
            case Err(err):
                return Err(err)

    async def get_tree(
        self, repo: RepoRef, sha: str, recursive: bool = True
    ) -> Result[TreeListing, MultibotError]:
        match await self._request(
            "GET",
            self._repo_url(repo, f"git/trees/{sha}"),
            params={"recursive": "1"} if recursive else None,
            context={"repo": repo.full_name, "sha": sha},
        ):
            case Ok(payload):
                entries = [TreeEntry.model_validate(item) for item in payload.get("tree", [])]
                return Ok(TreeListing(tree=entries, truncated=bool(payload.get("truncated"))))
            case Err(err):
                return Err(err)

    async def create_tree(
        self, repo: RepoRef, entries: list[TreeEntry], base_tree: str | None
    ) -> Result[str, MultibotError]:
        data: dict[str, Any] = {"tree": [entry.to_payload() for entry in entries]}
        # base_tree makes this an update of the given tree rather than a full tree.
        if base_tree:
            data["base_tree"] = base_tree
        match await self._request(
            "POST",
            self._repo_url(repo, "git/trees"),
            json=data,
            context={"repo": repo.full_name},
        ):
            case Ok(payload):
                return Ok(payload["sha"])
            case Err(err):
                return Err(err)

    async def create_commit(
        self, repo: RepoRef, message: str, tree: str, parents: list[str]
    ) -> Result[str, MultibotError]:
        match await self._request(
            "POST",
            self._repo_url(repo, "git/commits"),
            json={"message": message, "tree": tree, "parents": parents},
            context={"repo": repo.full_name},
        ):
            case Ok(payload):
                return Ok(payload["sha"])
            case Err(err):
                return Err(err)

    async def update_ref(
        self, repo: RepoRef, ref: str, sha: str, force: bool = False
    ) -> Result[str, MultibotError]:
        context = {"repo": repo.full_name, "ref": ref}
        match await self._request(
            "PATCH",
            self._repo_url(repo, f"git/refs/{quote(ref)}"),
            json={"sha": sha, "force": force},
            context=context,
        ):
            case Ok(payload):
                return Ok(payload["object"]["sha"])
            case Err(RemoteError(status=422) as err):
                return Err(
                    FastForwardRejected(f"Ref update rejected: {err.message}", context=err.context)
                )
            case Err(err):
                return Err(err)

    async def create_pull_request(
        self, repo: RepoRef, title: str, body: str, base: str, head: str
    ) -> Result[PullRequestRef, MultibotError]:
        match await self._request(
            "POST",
            self._repo_url(repo, "pulls"),
            json={"title": title, "body": body, "base": base, "head": head},
            context={"repo": repo.full_name, "base": base, "head": head},
        ):
            case Ok(payload):
                return Ok(
                    PullRequestRef(
                        url=payload.get("html_url"),
                        head_sha=(payload.get("head") or {}).get("sha"),
                    )
                )
            case Err(err):
                return Err(err)


__all__ = [
    "FileContent",
    "ForgeClient",
    "GitHubClient",
    "PullRequestRef",
    "TreeListing",
    "error_from_response",
]
