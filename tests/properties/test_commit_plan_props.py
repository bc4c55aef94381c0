"""Property-based tests for tree planning using Hypothesis.

These tests verify the invariants of plan_tree over arbitrary repositories
and transforms:
- Only created / updated files ever wait for a blob
- A repository without deletes produces a sparse plan on the branch tip
- A full rebuild never contains deleted paths or sub-tree entries
- A plan is a noop exactly when nothing is created, updated or deleted
"""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from multibot.core.result import Ok
from multibot.engine.commits import PendingEntry, plan_tree
from multibot.engine.models import FileResult, RepoRef, RepoTreeState, TreeEntry
from tests.mocks.fake_forge import git_sha

REPO = RepoRef(org="acme", name="x")
TIP = "c" * 40

# === Strategies ===

path_strategy = st.lists(
    st.sampled_from(["a", "b", "docs", "src", "x.md", "y.py"]), min_size=1, max_size=3
).map("/".join)

content_strategy = st.text(alphabet="abc\n", min_size=1, max_size=8)

tree_strategy = st.dictionaries(path_strategy, content_strategy, max_size=8)

mode_strategy = st.sampled_from(["100644", "100755"])

# keep / update / delete for existing files
change_strategy = st.sampled_from(["keep", "update", "delete"])


@st.composite
def repo_scenarios(draw: st.DrawFn) -> tuple[RepoTreeState, list[FileResult]]:
    existing = draw(tree_strategy)
    modes = {path: draw(mode_strategy) for path in existing}
    tree = [
        TreeEntry(path=path, mode=modes[path], type="blob", sha=git_sha("blob", content))
        for path, content in existing.items()
    ]
    dirs = {path.rsplit("/", 1)[0] for path in existing if "/" in path}
    tree.extend(
        TreeEntry(path=d, mode="040000", type="tree", sha=git_sha("tree", d)) for d in dirs
    )

    files: list[FileResult] = []
    for path, content in existing.items():
        if not draw(st.booleans()):
            continue
        match draw(change_strategy):
            case "keep":
                new: str | None = content
            case "update":
                new = content + "!"
            case _:
                new = None
        files.append(
            FileResult(
                repo=REPO,
                file=path,
                orig_content=content,
                new_content=new,
                sha=git_sha("blob", content),
                ref="feature",
            )
        )

    created = draw(st.lists(path_strategy, max_size=3, unique=True))
    for path in created:
        if path in existing:
            continue
        files.append(
            FileResult(
                repo=REPO, file=path, orig_content=None, new_content="new", sha=None, ref="feature"
            )
        )

    has_delete = any(f.is_delete for f in files)
    state = RepoTreeState(
        repo=REPO, parent_ref=TIP, tree=tree if has_delete else None, has_delete=has_delete
    )
    return state, files


# === Property Tests ===


@given(repo_scenarios())
def test_pending_entries_are_exactly_blob_files(
    scenario: tuple[RepoTreeState, list[FileResult]],
) -> None:
    state, files = scenario
    result = plan_tree(state, files)
    assert isinstance(result, Ok)
    plan = result.value

    assert sorted(p.file.file for p in plan.pending) == sorted(
        f.file for f in files if f.needs_blob
    )


@given(repo_scenarios())
def test_sparse_plan_without_deletes(scenario: tuple[RepoTreeState, list[FileResult]]) -> None:
    state, files = scenario
    if state.has_delete:
        return
    plan = plan_tree(state, files).unwrap()

    assert plan.base_tree == TIP
    assert all(isinstance(entry, PendingEntry) for entry in plan.entries)


@given(repo_scenarios())
def test_full_rebuild_drops_deletes_and_subtrees(
    scenario: tuple[RepoTreeState, list[FileResult]],
) -> None:
    state, files = scenario
    if not state.has_delete:
        return
    plan = plan_tree(state, files).unwrap()
    assert state.tree is not None

    deleted = {f.file for f in files if f.is_delete}
    planned = [e.path if isinstance(e, TreeEntry) else e.file.file for e in plan.entries]
    existing = {e.path for e in state.tree if e.type != "tree"}
    created = {f.file for f in files if f.is_create}

    assert plan.base_tree is None
    assert len(planned) == len(set(planned))
    assert set(planned) == (existing - deleted) | created
    assert not any(isinstance(e, TreeEntry) and e.type == "tree" for e in plan.entries)

    modes = {e.path: e.mode for e in state.tree if e.type != "tree"}
    for entry in plan.pending:
        if entry.file.is_update:
            assert entry.mode == modes[entry.file.file]


@given(repo_scenarios())
def test_noop_exactly_when_nothing_changes(
    scenario: tuple[RepoTreeState, list[FileResult]],
) -> None:
    state, files = scenario
    plan = plan_tree(state, files).unwrap()
    changed = any(not f.is_noop for f in files)
    assert plan.is_noop is not changed
