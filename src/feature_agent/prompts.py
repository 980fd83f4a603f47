"""Prompt templates for patch regeneration."""

from __future__ import annotations

SYSTEM_PROMPT = (
    "You are a senior engineer fixing a generated code patch for a Next.js App Router + Supabase app. "
    "You receive the feature context, the previous patch and the lint output it produced."
)

PATCH_FORMAT_INSTRUCTION = (
    "Return a JSON object with a single `markdown` field. The markdown must contain ONLY file sections: "
    "a heading line `## <relative/path>` followed by one fenced code block holding the FULL contents of "
    "that file. Do not emit partial diffs, explanations or any text outside the sections. "
    "Only touch files under src/ or supabase/migrations/."
)


def _block(title: str, body: str | None) -> str:
    text = (body or "").strip() or "(none)"
    return f"{title}:\n{text}"


def render_regeneration_prompt(
    *,
    title: str,
    description: str,
    spec: str | None,
    plan: str | None,
    previous_patch: str,
    lint_output: str,
) -> str:
    """Render the user prompt asking for a lint-clean replacement patch."""
    sections = [
        "Lint failed after applying the patch below. Produce a corrected patch that passes lint.",
        PATCH_FORMAT_INSTRUCTION,
        _block("TITLE", title),
        _block("DESCRIPTION", description),
        _block("SPEC", spec),
        _block("PLAN", plan),
        _block("PREVIOUS PATCH", previous_patch),
        _block("LINT OUTPUT", lint_output),
    ]
    return "\n\n".join(sections)


__all__ = ["PATCH_FORMAT_INSTRUCTION", "SYSTEM_PROMPT", "render_regeneration_prompt"]
