from __future__ import annotations

import logging
import sys

import pytest

from conftest import (
    FEATURE_ID,
    FIXED_NOW,
    GitWorkspace,
    InMemoryStore,
    ScriptedCompletion,
    make_feature,
    make_patch,
)
from feature_agent.errors import (
    FeatureLookupError,
    LintExhaustedError,
    PreconditionError,
    TestFailureError,
    UnsafePathError,
)
from feature_agent.runner import Runner, render_summary, summary_path_for

EXPECTED_BRANCH = f"agent/3f2a9c1e-{int(FIXED_NOW.timestamp() * 1000)}"


def _runner(workspace: GitWorkspace, store: InMemoryStore, completion: ScriptedCompletion, **config) -> Runner:
    return Runner(
        workspace.config(**config),
        store=store,
        completion=completion,
        clock=lambda: FIXED_NOW,
    )


def test_happy_path_writes_allowed_file_and_pushes_branch(git_workspace: GitWorkspace) -> None:
    patch = make_patch("src/lib/foo.ts", "export const x = 1;")
    store = InMemoryStore(make_feature(patch))
    completion = ScriptedCompletion(patches=[])

    outcome = _runner(git_workspace, store, completion).run(FEATURE_ID)

    assert outcome.branch == EXPECTED_BRANCH
    assert outcome.files == ("src/lib/foo.ts",)
    assert outcome.lint_attempts == 1
    assert outcome.tests_ran is True
    assert outcome.pushed is True
    assert (git_workspace.root / "src" / "lib" / "foo.ts").read_text(encoding="utf-8") == "export const x = 1;"
    assert git_workspace.current_branch() == EXPECTED_BRANCH
    assert git_workspace.remote_branches() == [EXPECTED_BRANCH]
    assert git_workspace.git("log", "-1", "--format=%s").stdout.strip() == "Agent: Add foo constant"
    assert completion.requests == []
    assert store.updates == []

    committed = git_workspace.git("show", "--name-only", "--format=", "HEAD").stdout.split()
    assert sorted(committed) == sorted(["src/lib/foo.ts", f"docs/agent-runs/{FEATURE_ID}.md"])
    assert git_workspace.git("status", "--porcelain").stdout.strip() == ""


def test_traversal_path_aborts_before_anything_is_written(git_workspace: GitWorkspace) -> None:
    patch = make_patch("../../etc/passwd", "root::0:0", lang="")
    store = InMemoryStore(make_feature(patch))

    with pytest.raises(UnsafePathError):
        _runner(git_workspace, store, ScriptedCompletion(patches=[])).run(FEATURE_ID)

    assert not (git_workspace.root.parent / "etc").exists()
    assert git_workspace.remote_branches() == []
    assert git_workspace.commit_count() == 1


def test_lint_self_heals_after_two_regenerations(git_workspace: GitWorkspace) -> None:
    initial = make_patch("src/lib/foo.ts", "export const x = 1 // LINT_ERROR")
    second = make_patch("src/lib/foo.ts", "export const x = 2 // LINT_ERROR")
    third = make_patch("src/lib/foo.ts", "export const x = 3;")
    store = InMemoryStore(make_feature(initial))
    completion = ScriptedCompletion(patches=[second, third])

    outcome = _runner(git_workspace, store, completion).run(FEATURE_ID)

    assert outcome.lint_attempts == 3
    assert outcome.pushed
    assert [patch for _, patch in store.updates] == [second, third]
    assert store.rows[FEATURE_ID][0].code_patch_markdown == third
    assert (git_workspace.root / "src" / "lib" / "foo.ts").read_text(encoding="utf-8") == "export const x = 3;"
    assert git_workspace.remote_branches() == [EXPECTED_BRANCH]
    assert completion.requests[0].lint_output.strip() == "error: X"


def test_lint_exhaustion_fails_without_commit_or_push(git_workspace: GitWorkspace) -> None:
    broken = [make_patch("src/lib/foo.ts", f"bad {n} // LINT_ERROR") for n in (1, 2, 3)]
    store = InMemoryStore(make_feature(broken[0]))
    completion = ScriptedCompletion(patches=broken[1:])

    with pytest.raises(LintExhaustedError) as excinfo:
        _runner(git_workspace, store, completion).run(FEATURE_ID)

    assert "error: X" in str(excinfo.value)
    assert len(completion.requests) == 2
    assert git_workspace.commit_count() == 1
    assert git_workspace.remote_branches() == []


def test_dry_run_writes_only_the_summary(git_workspace: GitWorkspace) -> None:
    (git_workspace.root / "scratch.txt").write_text("uncommitted\n", encoding="utf-8")
    patch = make_patch("src/lib/foo.ts", "export const x = 1;")
    store = InMemoryStore(make_feature(patch))
    completion = ScriptedCompletion(patches=[])
    branch_before = git_workspace.current_branch()

    outcome = _runner(git_workspace, store, completion).run(FEATURE_ID, dry_run=True)

    assert outcome.dry_run
    assert outcome.files == ("src/lib/foo.ts",)
    assert outcome.pushed is False
    assert outcome.lint_attempts == 0
    assert outcome.summary_path.exists()
    assert "Add foo constant" in outcome.summary_path.read_text(encoding="utf-8")
    assert not (git_workspace.root / "src" / "lib" / "foo.ts").exists()
    assert git_workspace.current_branch() == branch_before
    assert git_workspace.remote_branches() == []
    assert completion.requests == []


def test_dirty_tree_is_rejected(git_workspace: GitWorkspace) -> None:
    (git_workspace.root / "src" / "app" / "page.tsx").write_text("changed\n", encoding="utf-8")
    store = InMemoryStore(make_feature(make_patch("src/a.ts", "a")))

    with pytest.raises(PreconditionError, match="src/app/page.tsx"):
        _runner(git_workspace, store, ScriptedCompletion(patches=[])).run(FEATURE_ID)

    assert not (git_workspace.root / "src" / "a.ts").exists()


@pytest.mark.parametrize("patch", [None, "", "   \n"])
def test_missing_patch_points_upstream(git_workspace: GitWorkspace, patch) -> None:
    store = InMemoryStore(make_feature(patch))

    with pytest.raises(PreconditionError, match="upstream"):
        _runner(git_workspace, store, ScriptedCompletion(patches=[])).run(FEATURE_ID)


def test_unknown_feature_is_a_lookup_error(git_workspace: GitWorkspace) -> None:
    with pytest.raises(FeatureLookupError, match="not found"):
        _runner(git_workspace, InMemoryStore(), ScriptedCompletion(patches=[])).run(FEATURE_ID)


def test_ambiguous_feature_is_a_lookup_error(git_workspace: GitWorkspace) -> None:
    patch = make_patch("src/a.ts", "a")
    store = InMemoryStore(make_feature(patch), make_feature(patch))

    with pytest.raises(FeatureLookupError, match="ambiguous"):
        _runner(git_workspace, store, ScriptedCompletion(patches=[])).run(FEATURE_ID)


def test_failing_tests_block_the_push(git_workspace: GitWorkspace) -> None:
    store = InMemoryStore(make_feature(make_patch("src/lib/foo.ts", "export const x = 1;")))
    runner = _runner(
        git_workspace,
        store,
        ScriptedCompletion(patches=[]),
        test_command=(sys.executable, "tools/tests_fail.py"),
    )

    with pytest.raises(TestFailureError):
        runner.run(FEATURE_ID)

    assert git_workspace.commit_count() == 1
    assert git_workspace.remote_branches() == []


def test_unavailable_test_command_is_skipped(git_workspace: GitWorkspace) -> None:
    store = InMemoryStore(make_feature(make_patch("src/lib/foo.ts", "export const x = 1;")))
    runner = _runner(
        git_workspace,
        store,
        ScriptedCompletion(patches=[]),
        test_command=("definitely-not-installed-feature-agent", "test"),
    )

    outcome = runner.run(FEATURE_ID)

    assert outcome.tests_ran is False
    assert outcome.pushed
    assert git_workspace.remote_branches() == [EXPECTED_BRANCH]


def test_commit_template_is_configurable(git_workspace: GitWorkspace) -> None:
    store = InMemoryStore(make_feature(make_patch("src/lib/foo.ts", "export const x = 1;")))
    runner = _runner(git_workspace, store, ScriptedCompletion(patches=[]), commit_template="feat: {title}")

    runner.run(FEATURE_ID)

    assert git_workspace.git("log", "-1", "--format=%s").stdout.strip() == "feat: Add foo constant"


def test_summary_location_and_content(git_workspace: GitWorkspace) -> None:
    config = git_workspace.config()
    feature = make_feature(make_patch("src/a.ts", "a"))

    path = summary_path_for(config, "Feature/ID 42")
    text = render_summary(feature, branch="agent/x-1", generated_at=FIXED_NOW)

    assert path == git_workspace.root / "docs" / "agent-runs" / "feature-id-42.md"
    assert text.startswith("# Add foo constant\n")
    assert "- Branch: `agent/x-1`" in text
    assert "## Plan\n\n1. Add src/lib/foo.ts" in text


def test_run_logs_starting_branch_and_dry_run_leftover(
    git_workspace: GitWorkspace, caplog: pytest.LogCaptureFixture
) -> None:
    store = InMemoryStore(make_feature(make_patch("src/lib/foo.ts", "export const x = 1;")))
    branch_before = git_workspace.current_branch()

    with caplog.at_level(logging.INFO, logger="feature_agent.runner"):
        outcome = _runner(git_workspace, store, ScriptedCompletion(patches=[])).run(FEATURE_ID, dry_run=True)

    messages = [record.getMessage() for record in caplog.records if record.name == "feature_agent.runner"]
    assert f"Starting from branch {branch_before}." in messages
    assert any("left untracked" in message and str(outcome.summary_path) in message for message in messages)
