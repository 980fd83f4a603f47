"""Error taxonomy shared by the feature runner components."""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping


class ErrorKind(str, Enum):
    """Classification attached to every runner failure."""

    CONFIGURATION = "configuration"
    USAGE = "usage"
    LOOKUP = "lookup"
    PRECONDITION = "precondition"
    UNSAFE_PATH = "unsafe-path"
    FORBIDDEN_PATH = "forbidden-path"
    NOT_ALLOWLISTED = "not-allowlisted"
    PARSE = "parse"
    LINT = "lint"
    LINT_EXHAUSTED = "lint-exhausted"
    TEST_FAILURE = "test-failure"
    COMMAND = "command"
    RECORD_STORE = "record-store"

    @property
    def recoverable(self) -> bool:
        """Only lint failures are retried (by regenerating the patch)."""
        return self is ErrorKind.LINT


class RunnerError(RuntimeError):
    """Base class for fatal runner failures."""

    kind: ErrorKind = ErrorKind.PRECONDITION

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigurationError(RunnerError):
    """Required configuration (credentials, config file) is missing or invalid."""

    kind = ErrorKind.CONFIGURATION


class UsageError(RunnerError):
    """The command line was invoked incorrectly."""

    kind = ErrorKind.USAGE


class FeatureLookupError(RunnerError):
    """The feature request could not be resolved to exactly one record."""

    kind = ErrorKind.LOOKUP


class PreconditionError(RunnerError):
    """A run precondition (patch present, clean tree) does not hold."""

    kind = ErrorKind.PRECONDITION


class PathPolicyError(RunnerError):
    """Base class for rejected patch paths."""

    kind = ErrorKind.UNSAFE_PATH

    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message, details={"path": path})
        self.path = path


class UnsafePathError(PathPolicyError):
    kind = ErrorKind.UNSAFE_PATH


class ForbiddenPathError(PathPolicyError):
    kind = ErrorKind.FORBIDDEN_PATH


class NotAllowlistedError(PathPolicyError):
    kind = ErrorKind.NOT_ALLOWLISTED


class PatchParseError(RunnerError):
    """A patch document produced no file writes."""

    kind = ErrorKind.PARSE


class LintExhaustedError(RunnerError):
    """Lint still fails after the last permitted attempt."""

    kind = ErrorKind.LINT_EXHAUSTED

    def __init__(self, message: str, *, attempts: int, output: str) -> None:
        super().__init__(message, details={"attempts": attempts})
        self.attempts = attempts
        self.output = output


class TestFailureError(RunnerError):
    """The test command failed; tests are never retried."""

    __test__ = False  # keep pytest from collecting this class
    kind = ErrorKind.TEST_FAILURE


class CommandError(RunnerError):
    """A streaming command exited with a non-zero status."""

    kind = ErrorKind.COMMAND

    def __init__(self, message: str, *, command: tuple[str, ...], exit_code: int | None) -> None:
        super().__init__(message, details={"command": list(command), "exit_code": exit_code})
        self.command = command
        self.exit_code = exit_code


class RecordStoreError(RunnerError):
    """The record store rejected a request or could not be reached."""

    kind = ErrorKind.RECORD_STORE


__all__ = [
    "CommandError",
    "ConfigurationError",
    "ErrorKind",
    "FeatureLookupError",
    "ForbiddenPathError",
    "LintExhaustedError",
    "NotAllowlistedError",
    "PatchParseError",
    "PathPolicyError",
    "PreconditionError",
    "RecordStoreError",
    "RunnerError",
    "TestFailureError",
    "UnsafePathError",
    "UsageError",
]
