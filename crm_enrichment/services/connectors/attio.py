# crm_enrichment/services/connectors/attio.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import httpx
from tenacity import (
    retry,
    wait_exponential,
    stop_after_attempt,
    retry_if_exception_type,
)

from ...core.config import get_settings

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class AttioError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class KeyValidation:
    valid: bool
    workspace_name: Optional[str] = None
    error: Optional[str] = None


@dataclass
class NormalizedRecord:
    external_id: str
    record_type: str  # "company" | "person"
    name: str
    raw_data: Dict[str, Any]
    email: Optional[str] = None
    domain: Optional[str] = None
    title: Optional[str] = None
    company_name: Optional[str] = None
    linkedin_url: Optional[str] = None


@dataclass
class CrmList:
    id: str
    name: str
    api_slug: Optional[str] = None
    parent_object: Optional[str] = None


@dataclass
class CrmListEntry:
    entry_id: str
    record_id: str
    record_type: str


@dataclass
class Page:
    items: List[Any] = field(default_factory=list)
    has_more: bool = False
    next_offset: int = 0


# ---------------------------------------------------------------------------
# Attribute value helpers
#
# Attio returns every attribute as a list of typed value objects:
#   {"values": {"name": [{"value": "Acme"}], "domains": [{"domain": "acme.com"}]}}
# ---------------------------------------------------------------------------

def extract_value(values: Dict[str, Any], key: str) -> Optional[str]:
    entries = values.get(key)
    if not entries:
        return None
    first = entries[0]
    if not isinstance(first, dict):
        return None
    for attr in ("value", "full_name", "domain"):
        if isinstance(first.get(attr), str):
            return first[attr]
    return None


def extract_email(values: Dict[str, Any]) -> Optional[str]:
    entries = values.get("email_addresses")
    if not entries or not isinstance(entries[0], dict):
        return None
    return entries[0].get("email_address")


def extract_linkedin(values: Dict[str, Any]) -> Optional[str]:
    for key in ("linkedin", "linkedin_url", "social_links"):
        entries = values.get(key)
        if entries and isinstance(entries[0], dict):
            val = entries[0].get("value") or entries[0].get("url") or entries[0].get("original_url")
            if isinstance(val, str) and "linkedin" in val:
                return val
    return None


def _object_slug(record_type: str) -> str:
    return "companies" if record_type == "company" else "people"


def normalize_record(record: Dict[str, Any], record_type: str) -> NormalizedRecord:
    values = record.get("values") or {}
    external_id = (record.get("id") or {}).get("record_id")
    fallback = "Unknown Company" if record_type == "company" else "Unknown Person"

    normalized = NormalizedRecord(
        external_id=str(external_id),
        record_type=record_type,
        name=extract_value(values, "name") or fallback,
        raw_data=record,
    )
    if record_type == "company":
        normalized.domain = extract_value(values, "domains")
    else:
        normalized.email = extract_email(values)
        normalized.title = extract_value(values, "job_title")
        normalized.company_name = extract_value(values, "company")
        normalized.linkedin_url = extract_linkedin(values)
    return normalized


class AttioClient:
    """
    Thin synchronous client for the Attio v2 REST API.

    All listing calls are offset-paginated with a fixed page size; a page is
    assumed to have a successor whenever it came back full.
    """

    name = "attio"

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key
        self.base_url = (base_url or settings.ATTIO_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ATTIO_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _request(self, method: str, path: str, json: Dict[str, Any] | None = None) -> httpx.Response:
        with self._client() as client:
            return client.request(method, path, json=json)

    def _json(self, resp: httpx.Response, what: str) -> Dict[str, Any]:
        if resp.status_code < 200 or resp.status_code >= 300:
            raise AttioError(f"Attio API error fetching {what}: {resp.status_code}", resp.status_code)
        return resp.json()

    def validate_api_key(self) -> KeyValidation:
        try:
            with self._client() as client:
                resp = client.get("/self")
        except httpx.HTTPError as e:
            return KeyValidation(valid=False, error=f"Connection failed: {e}")

        if resp.status_code in (401, 403):
            return KeyValidation(valid=False, error="Invalid API key")
        if resp.status_code < 200 or resp.status_code >= 300:
            return KeyValidation(valid=False, error=f"Attio API error: {resp.status_code}")

        data = resp.json().get("data") or {}
        workspace = data.get("workspace") or {}
        return KeyValidation(valid=True, workspace_name=workspace.get("name") or "Attio Workspace")

    def _query_records(self, record_type: str, offset: int) -> Page:
        slug = _object_slug(record_type)
        resp = self._request(
            "POST",
            f"/objects/{slug}/records/query",
            json={
                "limit": PAGE_SIZE,
                "offset": offset,
                "sorts": [{"direction": "asc", "attribute": "name"}],
            },
        )
        payload = self._json(resp, slug)
        records = [normalize_record(r, record_type) for r in payload.get("data") or []]
        return Page(
            items=records,
            has_more=len(records) >= PAGE_SIZE,
            next_offset=offset + len(records),
        )

    def fetch_companies(self, offset: int = 0) -> Page:
        return self._query_records("company", offset)

    def fetch_people(self, offset: int = 0) -> Page:
        return self._query_records("person", offset)

    def fetch_lists(self) -> List[CrmList]:
        payload = self._json(self._request("GET", "/lists"), "lists")
        lists: List[CrmList] = []
        for item in payload.get("data") or []:
            parent = item.get("parent_object") or []
            lists.append(
                CrmList(
                    id=(item.get("id") or {}).get("list_id"),
                    name=item.get("name") or "",
                    api_slug=item.get("api_slug"),
                    parent_object=parent[0] if parent else None,
                )
            )
        return lists

    def fetch_list_entries(self, list_id: str, offset: int = 0) -> Page:
        resp = self._request(
            "POST",
            f"/lists/{list_id}/entries/query",
            json={"limit": PAGE_SIZE, "offset": offset},
        )
        payload = self._json(resp, "list entries")
        entries = [
            CrmListEntry(
                entry_id=(entry.get("id") or {}).get("entry_id"),
                record_id=entry.get("parent_record_id"),
                record_type="company" if entry.get("parent_object") == "companies" else "person",
            )
            for entry in payload.get("data") or []
        ]
        return Page(
            items=entries,
            has_more=len(entries) >= PAGE_SIZE,
            next_offset=offset + len(entries),
        )

    def fetch_record(self, record_type: str, record_id: str) -> Optional[NormalizedRecord]:
        resp = self._request("GET", f"/objects/{_object_slug(record_type)}/records/{record_id}")
        if resp.status_code == 404:
            return None
        payload = self._json(resp, "record")
        return normalize_record(payload.get("data") or {}, record_type)
