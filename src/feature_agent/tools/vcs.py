"""Minimal git helpers for the feature runner.

The runner only needs to check that the tree is clean, cut a branch, and
commit and push everything it wrote. Read-only queries go through the
capturing mode of :class:`ShellExecutor`; mutating commands stream their output
so a human watching the run sees git's own messages.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import List

from ..errors import PreconditionError
from .shell import ShellExecutor

DEFAULT_BRANCH_PREFIX = "agent"


def branch_name(
    feature_id: str,
    *,
    now: datetime | float | None = None,
    prefix: str = DEFAULT_BRANCH_PREFIX,
) -> str:
    """Return ``<prefix>/<first 8 chars of id>-<epoch millis>``."""

    if now is None:
        stamp = time.time()
    elif isinstance(now, datetime):
        stamp = now.timestamp()
    else:
        stamp = float(now)
    millis = int(stamp * 1000)
    short_id = feature_id.strip()[:8]
    prefix = prefix.strip().strip("/")
    if not prefix:
        return f"{short_id}-{millis}"
    return f"{prefix}/{short_id}-{millis}"


class WorkingTree:
    """Branch, commit and push primitives over a git working tree."""

    def __init__(self, shell: ShellExecutor, *, remote: str = "origin") -> None:
        self.shell = shell
        self.remote = remote

    # ------------------------------------------------------------- repo status
    def pending_changes(self) -> List[str]:
        """Return porcelain status lines; raise if the status query fails."""

        result = self.shell.capture(["git", "status", "--porcelain"])
        if not result.ok:
            message = result.output.strip() or "unknown git error"
            raise PreconditionError(f"git status failed: {message}")
        return [line for line in result.output.splitlines() if line.strip()]

    def ensure_clean(self) -> None:
        """Raise :class:`PreconditionError` if the working tree is not clean."""

        pending = self.pending_changes()
        if pending:
            preview = "\n".join(pending[:10])
            raise PreconditionError(
                "Working tree has pending changes; commit or stash them before running the agent.\n"
                f"{preview}",
                details={"pending": pending},
            )

    def current_branch(self) -> str | None:
        """Return the current branch name or ``None`` when detached."""

        result = self.shell.capture(["git", "rev-parse", "--abbrev-ref", "HEAD"])
        if not result.ok:
            return None
        branch = result.output.strip()
        if not branch or branch == "HEAD":
            return None
        return branch

    # -------------------------------------------------------------- branches
    def create_branch(self, name: str) -> None:
        self.shell.stream(["git", "checkout", "-b", name])

    # -------------------------------------------------------------- remotes
    def commit_and_push(self, branch: str, message: str) -> None:
        """Stage everything, commit with ``message`` and push ``branch`` upstream."""

        self.shell.stream(["git", "add", "-A"])
        self.shell.stream(["git", "commit", "-m", message])
        self.shell.stream(["git", "push", "-u", self.remote, branch])


__all__ = ["DEFAULT_BRANCH_PREFIX", "WorkingTree", "branch_name"]
