"""Typed client base class for the language-model integrations."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
]


T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


def _close_schema(value: Any) -> Any:
    """Recursively tighten JSON Schema objects to disallow unknown keys.

    Strict structured outputs require every property to be listed as required
    and ``additionalProperties`` to be false.
    """
    if isinstance(value, dict):
        if value.get("type") == "object":
            value["additionalProperties"] = False
            properties = value.get("properties")
            if isinstance(properties, dict):
                value["required"] = list(properties.keys())
                for key, child in list(properties.items()):
                    properties[key] = _close_schema(child)
        for key, child in list(value.items()):
            if key == "properties":
                continue
            value[key] = _close_schema(child)
    elif isinstance(value, list):
        return [_close_schema(item) for item in value]
    return value


class LLMClientError(RuntimeError):
    """Base error raised for structured LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries."""


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Typed request payload sent to an LLM."""

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""
        def _message(role: str, text: str) -> Dict[str, Any]:
            return {"role": role, "content": [{"type": "input_text", "text": text}]}

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))

        schema_name = getattr(self.response_model, "__name__", "feature_agent_response")
        schema = _close_schema(TypeAdapter(self.response_model).json_schema())

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            },
        }
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, str] = {}
            for key, value in self.metadata.items():
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


class LLMClient:
    """High-level helper that enforces JSON responses and schema validation."""

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        result, _ = self.invoke_structured(request)
        return result

    def invoke_structured(self, request: LLMRequest[T]) -> tuple[T, Any]:
        """Invoke the model and return both the validated response and raw data."""
        attempts = request.max_attempts or self._max_attempts
        adapter = TypeAdapter(request.response_model)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            payload = request.to_payload(self._model)
            try:
                raw = self._raw_invoke(payload)
                data = self._parse_json(raw)
                validated = adapter.validate_python(data)
            except (LLMResponseFormatError, LLMTransportError, ValidationError) as error:
                last_error = error
                LOGGER.debug("Model attempt %d/%d failed: %s", attempt, attempts, error)
                if attempt >= attempts:
                    break
                time.sleep(self._retry_delay)
                continue
            return validated, data

        raise LLMRetryError(
            f"Failed to produce schema-valid JSON after {attempts} attempt(s) for model "
            f"{request.model or self._model}: {last_error}"
        ) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse JSON payloads and normalise errors."""
        text = (raw_response or "").strip()
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")

        candidates = [text]
        repaired = _repair_json_payload(text)
        if repaired and repaired not in candidates:
            candidates.append(repaired)

        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue

        raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}")


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    match = re.match(r"```(?:json)?[^\n]*\n(?P<body>.*?)\n?```\s*$", payload, re.IGNORECASE | re.DOTALL)
    if match is None:
        return payload
    return match.group("body").strip()


def _strip_trailing_commas(payload: str) -> str:
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage a JSON object embedded in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    if not stripped:
        return None
    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    expected: list[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(stripped):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = opening_idx is not None
            continue
        if char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                return _strip_trailing_commas(stripped[opening_idx : index + 1].strip())
    return None

