"""Client for the OpenAI JSON Responses API."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["DEFAULT_MODEL", "ResponsesClient"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"

Transport = Callable[[Dict[str, Any]], str]


class ResponsesClient(LLMClient):
    """Thin adapter around the Responses API with structured JSON output."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        try:
            raw_response = self._transport(payload)
        except LLMTransportError:
            raise
        except Exception as error:  # pragma: no cover - transport implementations vary
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = self._extract_output_text(raw_response)
        if text is None:
            raise LLMResponseFormatError("Responses API reply did not contain output text.")
        return text

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport targeting the Responses API."""
        import urllib.error
        import urllib.request

        LOGGER.debug("POST %s (model=%s)", self._base_url, payload.get("model"))
        request = urllib.request.Request(
            self._base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Responses API request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach Responses API: {error.reason}") from error

        return raw.decode("utf-8")

    def _extract_output_text(self, raw_response: str) -> Optional[str]:
        """Return the model's output text from a Responses API envelope."""
        if not raw_response:
            return None

        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response

        if not isinstance(data, dict):
            return raw_response

        output_text = data.get("output_text")
        if isinstance(output_text, str) and output_text.strip():
            return output_text

        for key in ("output", "choices"):
            text = self._first_text_content(data.get(key))
            if text:
                return text

        # Already the structured payload rather than an envelope.
        if "output" not in data and "choices" not in data:
            return raw_response
        return None

    @staticmethod
    def _first_text_content(container: Any) -> Optional[str]:
        if not container:
            return None
        if isinstance(container, dict):
            container = [container]

        for item in container:
            if not isinstance(item, dict):
                continue

            contents = item.get("content")
            if isinstance(contents, list):
                for content_item in contents:
                    if not isinstance(content_item, dict):
                        continue
                    json_payload = content_item.get("json")
                    if isinstance(json_payload, (dict, list)):
                        return json.dumps(json_payload)
                    text = content_item.get("text")
                    if isinstance(text, str) and text.strip():
                        return text

            message = item.get("message")
            if isinstance(message, dict):
                text = message.get("content")
                if isinstance(text, str) and text.strip():
                    return text

        return None
