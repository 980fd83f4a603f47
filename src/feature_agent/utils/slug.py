"""Filesystem-friendly slugs for feature identifiers."""

from __future__ import annotations

import hashlib
import re
from typing import Pattern

_SLUG_PATTERN: Pattern[str] = re.compile(r"[^a-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def slugify(value: str | None, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise ``value`` into a lowercase slug no longer than ``max_length``.

    Over-long slugs keep a prefix and gain a short hash suffix so distinct
    inputs stay distinct.
    """
    slug = _normalise((value or "").strip().lower())
    if not slug:
        slug = _normalise(fallback.lower()) or "item"
    # "." and ".." are not usable as file names.
    if set(slug) == {"."}:
        slug = fallback

    if len(slug) <= max_length:
        return slug

    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix = slug[: max(max_length - len(digest) - 1, 1)].rstrip("-.")
    return f"{prefix}-{digest}"


def _normalise(value: str) -> str:
    slug = _SLUG_PATTERN.sub("-", value)
    slug = _HYPHEN_COLLAPSE.sub("-", slug)
    return slug.strip("-")
