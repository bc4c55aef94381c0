"""Output formatters for action results.

The engine only emits ResultRecord objects. This module turns them into
``json``, ``text`` or ``diff`` output, with rich styles for the diff view.
"""

from __future__ import annotations

import difflib
import json
from collections.abc import Sequence

from rich.text import Text

from multibot.core.config import OutputFormat
from multibot.core.result import ConfigurationError
from multibot.engine.models import ResultRecord

PADDING_CHAR = "#"
DIFF_HEADER_LINES = 2

_DEST_LABELS = {"Create": "<created>", "Update": "<updated>", "Delete": "<deleted>"}


def _branch_action(record: ResultRecord) -> str | None:
    if record.branch is None or record.branch.dest_exists is None:
        return None
    return "Noop (exists)" if record.branch.dest_exists else "Create"


def _blob_action(record: ResultRecord) -> str | None:
    content = record.content
    if content is None:
        return None
    if content.create:
        return "Create"
    if content.update:
        return "Update"
    if content.delete:
        return "Delete"
    return None


def record_header(record: ResultRecord) -> str:
    """``#``-boxed path followed by the populated branch / blob / PR / sha lines."""
    path = record.display_path
    rule = PADDING_CHAR * (len(path) + 4)
    branch = record.branch
    pr = record.pull_request
    commit = record.commit

    lines: list[str | None] = [
        rule,
        f"{PADDING_CHAR} {path} {PADDING_CHAR}",
        rule,
        f"# - Branch Source: {branch.src}" if branch and branch.src else None,
        f"# - Branch Dest:   {branch.dest}" if branch and branch.dest else None,
    ]
    if (branch_action := _branch_action(record)) is not None:
        lines.append(f"# - Branch Action: {branch_action}")
    if (blob_action := _blob_action(record)) is not None:
        lines.append(f"# - Blob Action:   {blob_action}")
    if pr is not None:
        if pr.url:
            lines.append(f"# - PR URL:        {pr.url}")
        lines.append(f"# - PR Exists:     {str(pr.exists).lower()}")
    if commit is not None and commit.sha:
        lines.append(f"# - Git SHA:       {commit.sha}")
    return "\n".join(line for line in lines if line)


class Formatter:
    """Render a list of records for the terminal."""

    name: str = ""

    def render(self, records: Sequence[ResultRecord]) -> Text:
        raise NotImplementedError


class JsonFormatter(Formatter):
    name = "json"

    def render(self, records: Sequence[ResultRecord]) -> Text:
        return Text(json.dumps([r.to_json_dict() for r in records], indent=2))


class TextFormatter(Formatter):
    """Header plus the new file content."""

    name = "text"

    def render(self, records: Sequence[ResultRecord]) -> Text:
        blocks = [
            f"{record_header(r)}\n{(r.content.new if r.content else None) or ''}" for r in records
        ]
        return Text("\n\n".join(blocks))


class DiffFormatter(Formatter):
    """Dimmed header plus a coloured unified diff of original vs new content."""

    name = "diff"

    @staticmethod
    def _labels(record: ResultRecord) -> tuple[str, str]:
        branch = record.branch
        src = branch.src if branch and branch.src else "<original>"
        if branch and branch.dest:
            return src, branch.dest
        return src, _DEST_LABELS.get(_blob_action(record) or "", "<unknown>")

    def _render_one(self, record: ResultRecord) -> Text:
        out = Text(record_header(record), style="dim")
        content = record.content
        if content is None:
            return out

        if content.orig == content.new:
            out.append("\n<noop>", style="bold")
            return out

        path = record.display_path
        src, dest = self._labels(record)
        diff = difflib.unified_diff(
            (content.orig or "").splitlines(keepends=True),
            (content.new or "").splitlines(keepends=True),
            fromfile=f"{path}\t{src}",
            tofile=f"{path}\t{dest}",
        )
        for i, line in enumerate(diff):
            line = line.rstrip("\n")
            if i < DIFF_HEADER_LINES:
                style = "bold"
            elif line.startswith("@@"):
                style = "cyan"
            elif line.startswith("-"):
                style = "red"
            elif line.startswith("+"):
                style = "green"
            else:
                style = ""
            out.append("\n")
            out.append(line, style=style)
        return out

    def render(self, records: Sequence[ResultRecord]) -> Text:
        return Text("\n\n").join(self._render_one(r) for r in records)


FORMATTERS: dict[str, type[Formatter]] = {
    JsonFormatter.name: JsonFormatter,
    TextFormatter.name: TextFormatter,
    DiffFormatter.name: DiffFormatter,
}


def get_formatter(name: OutputFormat | str) -> Formatter:
    try:
        return FORMATTERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown format: {name}", context={"choices": ", ".join(FORMATTERS)}
        ) from None


__all__ = [
    "DiffFormatter",
    "Formatter",
    "JsonFormatter",
    "TextFormatter",
    "get_formatter",
    "record_header",
]
