"""Run external commands either streaming to the terminal or captured."""

from __future__ import annotations

import json
import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..errors import CommandError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandResult:
    """Outcome of a captured command invocation."""

    command: tuple[str, ...]
    ok: bool
    output: str
    exit_code: int | None = None


def split_command(command: str | Sequence[str]) -> tuple[str, ...]:
    """Normalise a configured command into an argument tuple."""
    if isinstance(command, str):
        return tuple(shlex.split(command))
    return tuple(str(part) for part in command)


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


class ShellExecutor:
    """Execute commands relative to a working directory."""

    def __init__(self, cwd: Path | str) -> None:
        self.cwd = Path(cwd)

    def stream(self, command: str | Sequence[str]) -> None:
        """Run ``command`` with inherited stdio; raise on non-zero exit."""

        args = split_command(command)
        if not args:
            raise CommandError("Empty command", command=args, exit_code=None)
        LOGGER.info("$ %s", format_command(args))
        try:
            process = subprocess.run(  # noqa: S603 - commands come from runner config
                list(args),
                cwd=self.cwd,
                check=False,
            )
        except FileNotFoundError as error:
            raise CommandError(
                f"Command not found: {args[0]}",
                command=args,
                exit_code=None,
            ) from error
        if process.returncode != 0:
            raise CommandError(
                f"Command failed with exit status {process.returncode}: {format_command(args)}",
                command=args,
                exit_code=process.returncode,
            )

    def capture(self, command: str | Sequence[str]) -> CommandResult:
        """Run ``command`` and return its combined output instead of raising."""

        args = split_command(command)
        if not args:
            return CommandResult(command=args, ok=False, output="Empty command")
        LOGGER.debug("$ %s (captured)", format_command(args))
        try:
            process = subprocess.run(  # noqa: S603 - commands come from runner config
                list(args),
                cwd=self.cwd,
                check=False,
                capture_output=True,
                text=False,
            )
        except FileNotFoundError:
            return CommandResult(command=args, ok=False, output=f"Command not found: {args[0]}")

        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        output = "\n".join(part for part in (stdout, stderr) if part)
        return CommandResult(
            command=args,
            ok=process.returncode == 0,
            output=output,
            exit_code=process.returncode,
        )

    def probe(self, command: str | Sequence[str]) -> bool:
        """Return ``True`` when ``command`` looks runnable in this working tree.

        The executable must be on ``PATH``. For ``npm test`` and
        ``npm run <script>`` the script must also be declared in
        ``package.json``.
        """

        args = split_command(command)
        if not args or shutil.which(args[0]) is None:
            return False
        if Path(args[0]).name not in {"npm", "pnpm", "yarn"}:
            return True

        script = _npm_script_name(args[1:])
        if script is None:
            return True
        manifest = self.cwd / "package.json"
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return False
        scripts = data.get("scripts") if isinstance(data, dict) else None
        return isinstance(scripts, dict) and bool(scripts.get(script))


def _npm_script_name(args: Sequence[str]) -> str | None:
    if not args:
        return None
    if args[0] in {"test", "t"}:
        return "test"
    if args[0] in {"run", "run-script"} and len(args) > 1:
        return args[1]
    return None


__all__ = ["CommandResult", "ShellExecutor", "format_command", "split_command"]
