"""Parse markdown patches made of ``## <path>`` headings and fenced blocks.

A patch is a sequence of sections::

    ## src/lib/foo.ts
    ```ts
    export const x = 1;
    ```

Each heading opens a section that runs until the next heading. The first
fenced block inside the section holds the full contents of the file. Fences
are runs of three or more backticks or tildes; backtick blocks are preferred,
except that a backtick block nested inside an earlier tilde block belongs to
the tilde block. That rule lets a patch ship files which themselves contain
backtick fences by wrapping them in ``~~~``.

The parser is line oriented and does not understand markdown beyond that: a
``## `` line inside a fenced block starts a new section.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Sequence

_HEADING_RE = re.compile(r"^##[ \t]+(?P<path>.+?)[ \t]*$", re.MULTILINE)
_FENCE_RE = re.compile(r"^[ \t]*(?P<fence>`{3,}|~{3,})(?P<info>[^\n]*)$")


@dataclass(frozen=True, slots=True)
class FileWrite:
    """Single full-file write extracted from a patch section."""

    path: str
    content: str


@dataclass(frozen=True, slots=True)
class _Heading:
    path: str
    offset: int


@dataclass(frozen=True, slots=True)
class _FencedBlock:
    char: str
    start: int
    end: int
    content: str


def _find_headings(markdown: str) -> List[_Heading]:
    return [
        _Heading(path=match.group("path").strip(), offset=match.start())
        for match in _HEADING_RE.finditer(markdown)
    ]


def _opening_fence(line: str, char: str) -> str | None:
    match = _FENCE_RE.match(line)
    if match is None:
        return None
    fence = match.group("fence")
    if fence[0] != char:
        return None
    # CommonMark: a backtick fence's info string cannot contain backticks.
    if char == "`" and "`" in match.group("info"):
        return None
    return fence


def _is_closing_fence(line: str, fence: str) -> bool:
    stripped = line.strip()
    if len(stripped) < len(fence):
        return False
    return set(stripped) == {fence[0]}


def _first_block(lines: Sequence[str], char: str) -> _FencedBlock | None:
    """Return the first complete block fenced with ``char`` in ``lines``."""
    index = 0
    while index < len(lines):
        fence = _opening_fence(lines[index], char)
        if fence is None:
            index += 1
            continue
        for close in range(index + 1, len(lines)):
            if _is_closing_fence(lines[close], fence):
                content = "\n".join(lines[index + 1 : close])
                if lines[index].endswith("\r") and content.endswith("\r"):
                    # CRLF document: the "\r" belongs to the newline before the closing fence.
                    content = content[:-1]
                return _FencedBlock(char=char, start=index, end=close, content=content)
        # Unterminated fence: nothing after it can close a block of this kind.
        return None
    return None


def _section_block(section: str) -> _FencedBlock | None:
    # Split on "\n" only; other line separators are file content.
    lines = section.split("\n")[1:]  # drop the heading line
    backtick = _first_block(lines, "`")
    tilde = _first_block(lines, "~")
    if backtick is None:
        return tilde
    if tilde is not None and tilde.start < backtick.start and backtick.end < tilde.end:
        return tilde
    return backtick


def parse_patch(markdown: str) -> List[FileWrite]:
    """Return the file writes encoded in ``markdown`` in document order.

    Sections without a complete fenced block are skipped. Duplicate headings
    produce duplicate writes; applying them in order means the last one wins.
    """

    if not markdown:
        return []

    headings = _find_headings(markdown)
    writes: List[FileWrite] = []
    for index, heading in enumerate(headings):
        end = headings[index + 1].offset if index + 1 < len(headings) else len(markdown)
        block = _section_block(markdown[heading.offset : end])
        if block is None:
            continue
        writes.append(FileWrite(path=heading.path, content=block.content))
    return writes


def list_patch_paths(markdown: str) -> List[str]:
    """Return the distinct paths written by ``markdown`` in first-seen order."""
    seen: dict[str, None] = {}
    for write in parse_patch(markdown):
        seen.setdefault(write.path, None)
    return list(seen)


__all__ = ["FileWrite", "list_patch_paths", "parse_patch"]
