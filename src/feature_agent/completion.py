"""Completion service used to regenerate patches after lint failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models.llm_client import LLMClient, LLMRequest
from .prompts import SYSTEM_PROMPT, render_regeneration_prompt

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegenerationContext:
    """Everything the model needs to revise a patch."""

    feature_id: str
    title: str
    description: str
    spec: str | None
    plan: str | None
    previous_patch: str
    lint_output: str
    attempt: int


@dataclass(slots=True)
class PatchDraft:
    """Structured response carrying a replacement markdown patch."""

    markdown: str


class CompletionService:
    """Interface: turn a regeneration context into a markdown patch."""

    def complete(self, context: RegenerationContext) -> str:
        raise NotImplementedError


class LLMCompletionService(CompletionService):
    """Ask an :class:`LLMClient` for a revised patch."""

    def __init__(self, client: LLMClient, *, temperature: float = 0.2) -> None:
        self.client = client
        self.temperature = temperature

    def complete(self, context: RegenerationContext) -> str:
        request = LLMRequest(
            prompt=render_regeneration_prompt(
                title=context.title,
                description=context.description,
                spec=context.spec,
                plan=context.plan,
                previous_patch=context.previous_patch,
                lint_output=context.lint_output,
            ),
            system_prompt=SYSTEM_PROMPT,
            response_model=PatchDraft,
            metadata={"phase": "regenerate-patch", "feature_id": context.feature_id, "attempt": context.attempt},
            temperature=self.temperature,
        )
        LOGGER.debug("Requesting regenerated patch for %s (attempt %d)", context.feature_id, context.attempt)
        draft = self.client.invoke(request)
        return draft.markdown


__all__ = ["CompletionService", "LLMCompletionService", "PatchDraft", "RegenerationContext"]
