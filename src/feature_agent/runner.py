"""Top-level flow: feature request in, pushed branch out."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Tuple

from .completion import CompletionService
from .config import RunnerConfig
from .errors import CommandError, PreconditionError, TestFailureError
from .lint_loop import LintLoop
from .records import FeatureRequest, FeatureRequestStore
from .tools.applier import apply_patch_document
from .tools.shell import ShellExecutor, format_command
from .tools.vcs import WorkingTree, branch_name
from .utils.slug import slugify

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]

MISSING_PATCH_MESSAGE = "No code_patch_markdown found. Generate the code patch upstream first."


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class RunOutcome:
    """Summary of a finished run."""

    feature_id: str
    branch: str
    dry_run: bool
    files: Tuple[str, ...]
    summary_path: Path
    lint_attempts: int = 0
    tests_ran: bool = False
    pushed: bool = False


def summary_path_for(config: RunnerConfig, feature_id: str) -> Path:
    """Return the fixed per-feature location of the run summary."""
    return config.repo_root / config.summary_dir / f"{slugify(feature_id, fallback='feature')}.md"


def _section(title: str, body: Optional[str]) -> str:
    text = (body or "").strip() or "_(none)_"
    return f"## {title}\n\n{text}\n"


def render_summary(feature: FeatureRequest, *, branch: str, generated_at: datetime) -> str:
    """Render the human-readable run summary written next to the code."""
    lines = [
        f"# {feature.title or feature.id}",
        "",
        f"- Feature request: `{feature.id}`",
        f"- Branch: `{branch}`",
        f"- Generated: {generated_at.isoformat()}",
        "",
        _section("Description", feature.description),
        _section("Spec", feature.spec_markdown),
        _section("Plan", feature.plan_markdown),
    ]
    return "\n".join(lines)


class Runner:
    """Orchestrates one feature request from patch to pushed branch."""

    def __init__(
        self,
        config: RunnerConfig,
        *,
        store: FeatureRequestStore,
        completion: CompletionService,
        shell: ShellExecutor | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.completion = completion
        self.shell = shell or ShellExecutor(config.repo_root)
        self.tree = WorkingTree(self.shell, remote=config.remote)
        self.clock = clock or _utc_now

    def run(self, feature_id: str, *, dry_run: bool = False) -> RunOutcome:
        config = self.config

        feature = self.store.fetch(feature_id)
        LOGGER.info("Loaded feature request %s: %s", feature.id, feature.title)

        if not feature.has_patch:
            raise PreconditionError(MISSING_PATCH_MESSAGE)
        patch = feature.code_patch_markdown or ""

        now = self.clock()
        branch = branch_name(feature.id, now=now, prefix=config.branch_prefix)

        LOGGER.info("Starting from branch %s.", self.tree.current_branch() or "(unknown)")
        if dry_run:
            LOGGER.info("[dry-run] Skipping clean-tree check and creation of branch %s.", branch)
        else:
            self.tree.ensure_clean()
            self.tree.create_branch(branch)

        summary_path = self._write_summary(feature, branch=branch, generated_at=now)

        applied = apply_patch_document(
            patch,
            repo_root=config.repo_root,
            policy=config.policy,
            dry_run=dry_run,
        )
        outcome = RunOutcome(
            feature_id=feature.id,
            branch=branch,
            dry_run=dry_run,
            files=applied.touched_paths,
            summary_path=summary_path,
        )
        if dry_run:
            LOGGER.info("[dry-run] %d file(s) would be written; stopping before lint/test/commit.", applied.file_count)
            LOGGER.warning(
                "[dry-run] Summary %s is left untracked; delete it before a real run, which needs a clean tree.",
                summary_path,
            )
            return outcome

        lint = LintLoop(
            shell=self.shell,
            completion=self.completion,
            store=self.store,
            policy=config.policy,
            repo_root=config.repo_root,
            lint_command=config.lint_command,
            max_attempts=config.max_lint_attempts,
        )
        lint_outcome = lint.run(feature, patch)
        outcome.lint_attempts = lint_outcome.attempts

        outcome.tests_ran = self._run_tests()

        self.tree.commit_and_push(branch, config.commit_message(feature.title))
        outcome.pushed = True

        LOGGER.info("Branch pushed: %s", branch)
        LOGGER.info("Next: open a pull request from %s.", branch)
        return outcome

    def _write_summary(self, feature: FeatureRequest, *, branch: str, generated_at: datetime) -> Path:
        path = summary_path_for(self.config, feature.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_summary(feature, branch=branch, generated_at=generated_at), encoding="utf-8")
        LOGGER.info("Wrote run summary: %s", path)
        return path

    def _run_tests(self) -> bool:
        command = self.config.test_command
        if not self.shell.probe(command):
            LOGGER.info("No test command available (%s); skipping tests.", format_command(command))
            return False
        try:
            self.shell.stream(command)
        except CommandError as error:
            LOGGER.warning("Tests failed; not committing.")
            raise TestFailureError(f"Tests failed: {error}") from error
        return True


__all__ = ["MISSING_PATCH_MESSAGE", "RunOutcome", "Runner", "render_summary", "summary_path_for"]
