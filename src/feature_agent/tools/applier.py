"""Materialise parsed patch writes onto the working tree."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Mapping, Tuple

from ..errors import PatchParseError
from .path_guard import PathPolicy, check_path
from .patch_parser import FileWrite, parse_patch

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("feature_agent.telemetry")

NO_FILES_MESSAGE = (
    "Patch parser found no files. Ensure the patch uses '## <path>' headings "
    "followed by fenced code blocks."
)


@dataclass(slots=True)
class AppliedPatch:
    """Outcome of applying a patch document."""

    writes: Tuple[FileWrite, ...]
    dry_run: bool
    touched_paths: Tuple[str, ...] = field(default=())

    @property
    def file_count(self) -> int:
        return len(self.touched_paths)


def _serialise_event_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event as a single JSON line."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def apply_patch_document(
    markdown: str,
    *,
    repo_root: Path,
    policy: PathPolicy,
    dry_run: bool = False,
) -> AppliedPatch:
    """Validate and write every file in ``markdown`` in document order.

    A rejected path aborts the whole application immediately; files written
    earlier in the same pass are left in place. In dry-run mode the intended
    writes are logged and nothing touches the filesystem.
    """

    writes = parse_patch(markdown)
    if not writes:
        raise PatchParseError(NO_FILES_MESSAGE)

    root = Path(repo_root)
    touched: List[str] = []
    for write in writes:
        check_path(write.path, policy)
        if dry_run:
            LOGGER.info("[dry-run] Would write: %s (%d bytes)", write.path, len(write.content))
        else:
            target = root / write.path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(write.content, encoding="utf-8")
            LOGGER.info("Wrote: %s", write.path)
        emit_event(
            "patch.write",
            path=write.path,
            bytes=len(write.content.encode("utf-8")),
            dry_run=dry_run,
        )
        if write.path not in touched:
            touched.append(write.path)

    return AppliedPatch(writes=tuple(writes), dry_run=dry_run, touched_paths=tuple(touched))


__all__ = ["AppliedPatch", "NO_FILES_MESSAGE", "apply_patch_document", "emit_event"]
