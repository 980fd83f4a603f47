from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from feature_agent.completion import CompletionService, RegenerationContext  # noqa: E402
from feature_agent.config import Credentials, RunnerConfig  # noqa: E402
from feature_agent.records import FeatureRequest, FeatureRequestStore, select_single  # noqa: E402

FEATURE_ID = "3f2a9c1e-5b7d-4e21-9c0a-7d1e2f3a4b5c"
FIXED_NOW = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)

LINT_SCRIPT = textwrap.dedent(
    """
    import pathlib
    import sys

    failures = [
        path.as_posix()
        for path in sorted(pathlib.Path("src").rglob("*"))
        if path.is_file() and "LINT_ERROR" in path.read_text(encoding="utf-8")
    ]
    if failures:
        print("error: X")
        sys.exit(1)
    print("lint ok")
    """
).lstrip()


@dataclass(slots=True)
class GitWorkspace:
    """Throwaway working tree with a bare ``origin`` remote."""

    root: Path
    remote: Path

    def git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )

    def current_branch(self) -> str:
        return self.git("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def remote_branches(self) -> List[str]:
        output = subprocess.run(
            ["git", "for-each-ref", "--format=%(refname:short)", "refs/heads"],
            cwd=self.remote,
            check=True,
            capture_output=True,
            text=True,
        ).stdout
        return [line.strip() for line in output.splitlines() if line.strip()]

    def commit_count(self) -> int:
        return int(self.git("rev-list", "--count", "HEAD").stdout.strip())

    def config(self, **overrides: object) -> RunnerConfig:
        values: Dict[str, object] = {
            "repo_root": self.root,
            "credentials": Credentials(
                supabase_url="https://example.supabase.co",
                supabase_service_role_key="service-key",
                openai_api_key="sk-test",
            ),
            "lint_command": (sys.executable, "tools/lint.py"),
            "test_command": (sys.executable, "tools/tests_pass.py"),
        }
        values.update(overrides)
        return RunnerConfig(**values)  # type: ignore[arg-type]


@pytest.fixture()
def git_workspace(tmp_path: Path) -> GitWorkspace:
    """Create a committed app repository plus a bare remote to push to."""

    remote = tmp_path / "remote.git"
    subprocess.run(["git", "init", "--bare", str(remote)], check=True, capture_output=True)

    root = tmp_path / "app"
    root.mkdir()
    workspace = GitWorkspace(root=root, remote=remote)
    workspace.git("init")
    workspace.git("config", "user.email", "agent@example.com")
    workspace.git("config", "user.name", "Feature Agent")
    workspace.git("config", "commit.gpgsign", "false")
    workspace.git("remote", "add", "origin", str(remote))

    (root / "src" / "app").mkdir(parents=True)
    (root / "src" / "app" / "page.tsx").write_text("export default function Page() {}\n", encoding="utf-8")
    (root / "tools").mkdir()
    (root / "tools" / "lint.py").write_text(LINT_SCRIPT, encoding="utf-8")
    (root / "tools" / "tests_pass.py").write_text("print('tests ok')\n", encoding="utf-8")
    (root / "tools" / "tests_fail.py").write_text(
        "import sys\nprint('1 failing test')\nsys.exit(1)\n",
        encoding="utf-8",
    )

    workspace.git("add", ".")
    workspace.git("commit", "-m", "Initial app state")
    return workspace


class InMemoryStore(FeatureRequestStore):
    """Record store fake that keeps rows in a dict and records updates."""

    def __init__(self, *features: FeatureRequest) -> None:
        self.rows: Dict[str, List[FeatureRequest]] = {}
        for feature in features:
            self.rows.setdefault(feature.id, []).append(feature)
        self.updates: List[tuple[str, str]] = []

    def fetch(self, feature_id: str) -> FeatureRequest:
        rows = self.rows.get(feature_id, [])
        return select_single([_as_row(row) for row in rows], feature_id)

    def update_code_patch(self, feature_id: str, patch: str) -> None:
        self.updates.append((feature_id, patch))
        for row in self.rows.get(feature_id, []):
            row.code_patch_markdown = patch


def _as_row(feature: FeatureRequest) -> Dict[str, object]:
    return {
        "id": feature.id,
        "title": feature.title,
        "description": feature.description,
        "spec_markdown": feature.spec_markdown,
        "plan_markdown": feature.plan_markdown,
        "code_patch_markdown": feature.code_patch_markdown,
        "tests_markdown": feature.tests_markdown,
    }


@dataclass(slots=True)
class ScriptedCompletion(CompletionService):
    """Completion fake returning canned patches in order."""

    patches: List[str]
    requests: List[RegenerationContext] = field(default_factory=list)

    def complete(self, context: RegenerationContext) -> str:
        self.requests.append(context)
        if not self.patches:
            raise AssertionError("Unexpected regeneration request")
        return self.patches.pop(0)


def make_patch(path: str, content: str, *, lang: str = "ts") -> str:
    return f"## {path}\n```{lang}\n{content}\n```\n"


def make_feature(patch: str | None, *, feature_id: str = FEATURE_ID) -> FeatureRequest:
    return FeatureRequest(
        id=feature_id,
        title="Add foo constant",
        description="Expose a shared constant.",
        spec_markdown="# Spec\nExport `x`.",
        plan_markdown="1. Add src/lib/foo.ts",
        code_patch_markdown=patch,
    )
