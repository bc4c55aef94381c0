"""Tests for the content reader."""

from __future__ import annotations

import base64

import pytest

from multibot.core.result import PolicyViolation, RateLimitError, TransformError
from multibot.engine.models import FileAction, RepoRef
from multibot.engine.reader import decode_content, read_files
from multibot.engine.transform import TransformInput, identity_transform
from tests.mocks.fake_forge import FakeForge, git_sha


def shout(file: TransformInput) -> str | None:
    return None if file.contents is None else file.contents.upper()


def test_decode_content_handles_api_line_breaks() -> None:
    raw = base64.b64encode("hello\nworld".encode()).decode()
    assert decode_content(raw[:4] + "\n" + raw[4:]) == "hello\nworld"


def test_decode_content_rejects_binary() -> None:
    raw = base64.b64encode(b"\xff\xfe\x00").decode()
    with pytest.raises(PolicyViolation):
        decode_content(raw)


class TestReadFiles:
    @pytest.mark.asyncio
    async def test_reads_and_transforms_existing_file(
        self, forge: FakeForge, acme_x: RepoRef
    ) -> None:
        forge.add_repo("acme/x", {"README.md": "hello"})

        outcome = await read_files(forge, [acme_x], ["README.md"], "master", shout)

        assert outcome.ok
        [result] = outcome.values
        assert result.orig_content == "hello"
        assert result.new_content == "HELLO"
        assert result.sha == git_sha("blob", "hello")
        assert result.ref == "master"
        assert result.action is FileAction.UPDATE
        assert forge.mutations() == []

    @pytest.mark.asyncio
    async def test_missing_file_is_create_candidate(
        self, forge: FakeForge, acme_x: RepoRef
    ) -> None:
        forge.add_repo("acme/x", {"README.md": "hello"})

        def create(file: TransformInput) -> str | None:
            return file.contents if file.contents is not None else "new file"

        outcome = await read_files(forge, [acme_x], ["NEW.md"], "master", create)

        [result] = outcome.values
        assert result.orig_content is None
        assert result.sha is None
        assert result.action is FileAction.CREATE

    @pytest.mark.asyncio
    async def test_missing_repository_reads_like_missing_file(self, forge: FakeForge) -> None:
        ghost = RepoRef(org="acme", name="ghost")
        outcome = await read_files(forge, [ghost], ["README.md"], "master", lambda f: "x")
        assert outcome.ok
        assert outcome.values[0].is_create

    @pytest.mark.asyncio
    async def test_create_plus_delete_is_policy_violation(
        self, forge: FakeForge, acme_x: RepoRef
    ) -> None:
        forge.add_repo("acme/x", {})
        outcome = await read_files(forge, [acme_x], ["NEW.md"], "master", lambda f: None)
        assert isinstance(outcome.error, PolicyViolation)
        assert outcome.error.context["path"] == "acme/x/NEW.md"

    @pytest.mark.asyncio
    async def test_repo_major_order_across_repos(
        self, forge: FakeForge, acme_x: RepoRef, acme_y: RepoRef
    ) -> None:
        forge.add_repo("acme/x", {"a.md": "1", "b.md": "2"})
        forge.add_repo("acme/y", {"a.md": "3", "b.md": "4"})

        outcome = await read_files(
            forge, [acme_x, acme_y], ["a.md", "b.md"], "master", identity_transform
        )

        assert [r.path for r in outcome.values] == [
            "acme/x/a.md",
            "acme/x/b.md",
            "acme/y/a.md",
            "acme/y/b.md",
        ]

    @pytest.mark.asyncio
    async def test_remote_error_carries_path_and_keeps_partials(
        self, forge: FakeForge, acme_x: RepoRef, acme_y: RepoRef
    ) -> None:
        forge.add_repo("acme/x", {"README.md": "hello"})
        forge.add_repo("acme/y", {"README.md": "hello"})
        error = RateLimitError("GitHub API FORBIDDEN Error", status=403)
        forge.fail("get_content", "acme/y", error)

        outcome = await read_files(forge, [acme_x, acme_y], ["README.md"], "master", shout)

        assert isinstance(outcome.error, RateLimitError)
        assert outcome.error.context["path"] == "acme/y/README.md"
        assert [r.path for r in outcome.values] == ["acme/x/README.md"]

    @pytest.mark.asyncio
    async def test_transform_error(self, forge: FakeForge, acme_x: RepoRef) -> None:
        forge.add_repo("acme/x", {"README.md": "hello"})

        def broken(file: TransformInput) -> str:
            raise KeyError("nope")

        outcome = await read_files(forge, [acme_x], ["README.md"], "master", broken)
        assert isinstance(outcome.error, TransformError)
