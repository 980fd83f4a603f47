"""Feature request records and the Supabase-backed store that serves them."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote

from .errors import FeatureLookupError, RecordStoreError

LOGGER = logging.getLogger(__name__)

DEFAULT_TABLE = "feature_requests"
SELECT_FIELDS = (
    "id",
    "title",
    "description",
    "spec_markdown",
    "plan_markdown",
    "code_patch_markdown",
    "tests_markdown",
)


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass(slots=True)
class FeatureRequest:
    """Persisted description of a requested change and its generated artifacts."""

    id: str
    title: str
    description: str = ""
    spec_markdown: Optional[str] = None
    plan_markdown: Optional[str] = None
    code_patch_markdown: Optional[str] = None
    tests_markdown: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "FeatureRequest":
        return cls(
            id=str(row.get("id") or ""),
            title=str(row.get("title") or ""),
            description=str(row.get("description") or ""),
            spec_markdown=_optional_text(row.get("spec_markdown")),
            plan_markdown=_optional_text(row.get("plan_markdown")),
            code_patch_markdown=_optional_text(row.get("code_patch_markdown")),
            tests_markdown=_optional_text(row.get("tests_markdown")),
        )

    @property
    def has_patch(self) -> bool:
        return bool(self.code_patch_markdown and self.code_patch_markdown.strip())


class FeatureRequestStore:
    """Interface of the record store used by the runner."""

    def fetch(self, feature_id: str) -> FeatureRequest:
        """Return the single record with ``feature_id`` or raise :class:`FeatureLookupError`."""
        raise NotImplementedError

    def update_code_patch(self, feature_id: str, patch: str) -> None:
        """Replace the stored code patch for ``feature_id``."""
        raise NotImplementedError


# (method, url, headers, body) -> (status, body)
Transport = Callable[[str, str, Dict[str, str], Optional[bytes]], Tuple[int, str]]


def select_single(rows: List[Mapping[str, Any]], feature_id: str) -> FeatureRequest:
    """Turn a lookup result into exactly one record."""
    if not rows:
        raise FeatureLookupError(f"Feature request not found: {feature_id}")
    if len(rows) > 1:
        raise FeatureLookupError(
            f"Feature request lookup is ambiguous: {len(rows)} records match {feature_id}",
            details={"matches": len(rows)},
        )
    return FeatureRequest.from_row(rows[0])


class SupabaseFeatureStore(FeatureRequestStore):
    """Read and update feature requests through Supabase's PostgREST endpoint."""

    def __init__(
        self,
        url: str,
        service_key: str,
        *,
        table: str = DEFAULT_TABLE,
        transport: Optional[Transport] = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._service_key = service_key
        self._table = table
        self._timeout = timeout
        self._transport = transport or self._http_transport

    @property
    def table_url(self) -> str:
        return f"{self._base_url}/rest/v1/{self._table}"

    def _headers(self, *, extra: Mapping[str, str] | None = None) -> Dict[str, str]:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def fetch(self, feature_id: str) -> FeatureRequest:
        url = f"{self.table_url}?id=eq.{quote(feature_id, safe='')}&select={','.join(SELECT_FIELDS)}"
        status, body = self._request("GET", url, self._headers(), None)
        try:
            rows = json.loads(body) if body else []
        except json.JSONDecodeError as error:
            raise RecordStoreError(f"Record store returned invalid JSON: {body[:200]}") from error
        if not isinstance(rows, list):
            raise RecordStoreError(f"Unexpected record store payload for {feature_id}: {body[:200]}")
        LOGGER.debug("Fetched %d row(s) for feature %s (HTTP %s)", len(rows), feature_id, status)
        return select_single(rows, feature_id)

    def update_code_patch(self, feature_id: str, patch: str) -> None:
        url = f"{self.table_url}?id=eq.{quote(feature_id, safe='')}"
        body = json.dumps({"code_patch_markdown": patch}).encode("utf-8")
        headers = self._headers(extra={"Content-Type": "application/json", "Prefer": "return=minimal"})
        self._request("PATCH", url, headers, body)
        LOGGER.debug("Updated code patch for feature %s (%d chars)", feature_id, len(patch))

    def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[bytes],
    ) -> tuple[int, str]:
        status, text = self._transport(method, url, headers, body)
        if status >= 400:
            raise RecordStoreError(f"Record store {method} failed with HTTP {status}: {text[:200]}")
        return status, text

    def _http_transport(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[bytes],
    ) -> tuple[int, str]:
        import urllib.error
        import urllib.request

        request = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return getattr(response, "status", 200), response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            return error.code, error.read().decode("utf-8", errors="ignore")
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise RecordStoreError(f"Failed to reach record store: {error.reason}") from error


__all__ = [
    "DEFAULT_TABLE",
    "FeatureRequest",
    "FeatureRequestStore",
    "SELECT_FIELDS",
    "SupabaseFeatureStore",
    "select_single",
]
