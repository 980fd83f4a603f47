"""Bounded lint loop that asks the completion service to repair failing patches.

The loop is a small state machine::

    LINTING --ok--------------------------> DONE
    LINTING --fail, attempt == max--------> FATAL (LintExhaustedError)
    LINTING --fail, attempt < max---------> REGENERATING
    REGENERATING --patch applied+saved----> LINTING (attempt + 1)

Each iteration works on an immutable :class:`AttemptState`; the next state is
built from the previous one instead of mutating shared variables. Setting
``max_attempts=1`` turns the loop into "abort on the first lint failure".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Sequence, Tuple

from .completion import CompletionService, RegenerationContext
from .errors import CommandError, LintExhaustedError, PatchParseError
from .records import FeatureRequest, FeatureRequestStore
from .tools.applier import NO_FILES_MESSAGE, apply_patch_document, emit_event
from .tools.path_guard import PathPolicy
from .tools.patch_parser import parse_patch
from .tools.shell import ShellExecutor, format_command

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class LoopState(str, Enum):
    LINTING = "linting"
    REGENERATING = "regenerating"
    DONE = "done"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class AttemptState:
    """Loop variable: attempt number, current patch and the latest lint output."""

    attempt: int
    patch: str
    lint_output: str = ""


@dataclass(slots=True)
class LintOutcome:
    """Result of a lint loop that ended in success."""

    attempts: int
    patch: str
    regenerations: int
    history: Tuple[LoopState, ...] = ()


class LintLoop:
    """Run lint and regenerate the patch on failure, up to ``max_attempts`` times."""

    def __init__(
        self,
        *,
        shell: ShellExecutor,
        completion: CompletionService,
        store: FeatureRequestStore,
        policy: PathPolicy,
        repo_root: Path,
        lint_command: Sequence[str],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.shell = shell
        self.completion = completion
        self.store = store
        self.policy = policy
        self.repo_root = Path(repo_root)
        self.lint_command = tuple(lint_command)
        self.max_attempts = max_attempts

    def run(self, feature: FeatureRequest, patch: str) -> LintOutcome:
        """Drive the loop for ``feature`` whose ``patch`` is already on disk."""

        state = AttemptState(attempt=1, patch=patch)
        history: list[LoopState] = []
        regenerations = 0

        while True:
            history.append(LoopState.LINTING)
            LOGGER.info(
                "Lint attempt %d/%d: %s",
                state.attempt,
                self.max_attempts,
                format_command(self.lint_command),
            )
            result = self.shell.capture(self.lint_command)
            if not result.ok and result.exit_code is None:
                # Missing executable, not a lint failure.
                raise CommandError(
                    f"Lint command could not be started: {result.output}",
                    command=self.lint_command,
                    exit_code=None,
                )
            state = replace(state, lint_output=result.output)
            emit_event(
                "lint.attempt",
                feature_id=feature.id,
                attempt=state.attempt,
                ok=result.ok,
                exit_code=result.exit_code,
            )

            if result.ok:
                history.append(LoopState.DONE)
                LOGGER.info("Lint passed on attempt %d.", state.attempt)
                return LintOutcome(
                    attempts=state.attempt,
                    patch=state.patch,
                    regenerations=regenerations,
                    history=tuple(history),
                )

            if state.attempt >= self.max_attempts:
                history.append(LoopState.FATAL)
                raise LintExhaustedError(
                    f"Lint failed after {state.attempt} attempt(s):\n{state.lint_output}",
                    attempts=state.attempt,
                    output=state.lint_output,
                )

            history.append(LoopState.REGENERATING)
            LOGGER.warning(
                "Lint failed on attempt %d/%d; requesting a revised patch.",
                state.attempt,
                self.max_attempts,
            )
            state = self._regenerate(feature, state)
            regenerations += 1

    def _regenerate(self, feature: FeatureRequest, state: AttemptState) -> AttemptState:
        context = RegenerationContext(
            feature_id=feature.id,
            title=feature.title,
            description=feature.description,
            spec=feature.spec_markdown,
            plan=feature.plan_markdown,
            previous_patch=state.patch,
            lint_output=state.lint_output,
            attempt=state.attempt,
        )
        revised = self.completion.complete(context)
        if not parse_patch(revised):
            raise PatchParseError(f"Regenerated patch (attempt {state.attempt + 1}): {NO_FILES_MESSAGE}")

        apply_patch_document(revised, repo_root=self.repo_root, policy=self.policy, dry_run=False)
        self.store.update_code_patch(feature.id, revised)
        feature.code_patch_markdown = revised
        LOGGER.info("Applied and saved regenerated patch for attempt %d.", state.attempt + 1)
        return AttemptState(attempt=state.attempt + 1, patch=revised)


__all__ = ["AttemptState", "DEFAULT_MAX_ATTEMPTS", "LintLoop", "LintOutcome", "LoopState"]
