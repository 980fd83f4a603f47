"""Prefix-based write policy for paths coming out of generated patches."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Literal, Tuple

from ..errors import ForbiddenPathError, NotAllowlistedError, PathPolicyError, UnsafePathError

DEFAULT_ALLOWED_PREFIXES: Tuple[str, ...] = ("src/", "supabase/migrations/")
DEFAULT_FORBIDDEN_PREFIXES: Tuple[str, ...] = (
    ".git",
    ".github",
    ".env",
    "node_modules",
    "scripts",
    "feature-agent.yaml",
)

Verdict = Literal["allowed", "unsafe", "forbidden", "not-allowlisted"]


def _normalise_prefixes(values: Iterable[str]) -> Tuple[str, ...]:
    prefixes = []
    for value in values:
        cleaned = str(value).strip()
        if cleaned and cleaned not in prefixes:
            prefixes.append(cleaned)
    return tuple(prefixes)


@dataclass(frozen=True, slots=True)
class PathVerdict:
    """Non-raising outcome of evaluating a path against a policy."""

    path: str
    verdict: Verdict
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.verdict == "allowed"


@dataclass(frozen=True, slots=True)
class PathPolicy:
    """Allowed and forbidden path prefixes for generated file writes."""

    allowed_prefixes: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_PREFIXES)
    forbidden_prefixes: Tuple[str, ...] = field(default=DEFAULT_FORBIDDEN_PREFIXES)

    @classmethod
    def from_values(
        cls,
        allowed: Iterable[str] | None = None,
        forbidden: Iterable[str] | None = None,
    ) -> "PathPolicy":
        return cls(
            allowed_prefixes=_normalise_prefixes(allowed if allowed is not None else DEFAULT_ALLOWED_PREFIXES),
            forbidden_prefixes=_normalise_prefixes(
                forbidden if forbidden is not None else DEFAULT_FORBIDDEN_PREFIXES
            ),
        )

    def check(self, path: str) -> str:
        return check_path(path, self)

    def evaluate(self, path: str) -> PathVerdict:
        """Classify ``path`` without raising."""
        try:
            check_path(path, self)
        except UnsafePathError as error:
            return PathVerdict(path=path, verdict="unsafe", reason=str(error))
        except ForbiddenPathError as error:
            return PathVerdict(path=path, verdict="forbidden", reason=str(error))
        except NotAllowlistedError as error:
            return PathVerdict(path=path, verdict="not-allowlisted", reason=str(error))
        return PathVerdict(path=path, verdict="allowed")


def _segments(path: str) -> list[str]:
    return path.replace("\\", "/").split("/")


def check_path(path: str, policy: PathPolicy) -> str:
    """Return ``path`` unchanged when ``policy`` permits writing it.

    Checks run in order: absolute paths, ``..`` segments and empty segments
    (``src/lib/``, ``src//a.ts``) are unsafe, then forbidden prefixes, then
    the allowlist.
    """

    if path.startswith(("/", "\\")):
        raise UnsafePathError(f"Unsafe file path in patch (absolute): {path}", path=path)
    if ".." in _segments(path):
        raise UnsafePathError(f"Unsafe file path in patch (parent traversal): {path}", path=path)
    if "" in _segments(path):
        raise UnsafePathError(f"Unsafe file path in patch (empty segment or trailing slash): {path}", path=path)

    for prefix in policy.forbidden_prefixes:
        if path == prefix or path.startswith(prefix):
            raise ForbiddenPathError(f"Refusing to write forbidden path: {path} (matches {prefix!r})", path=path)

    if not any(path.startswith(prefix) for prefix in policy.allowed_prefixes):
        allowed = ", ".join(policy.allowed_prefixes) or "(none)"
        raise NotAllowlistedError(f"Path is not in the allowlist: {path} (allowed: {allowed})", path=path)

    return path


__all__ = [
    "DEFAULT_ALLOWED_PREFIXES",
    "DEFAULT_FORBIDDEN_PREFIXES",
    "PathPolicy",
    "PathPolicyError",
    "PathVerdict",
    "check_path",
]
