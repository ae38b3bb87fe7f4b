"""
Record store service backed by the Supabase PostgREST API.

All reads and writes of users, account requests, population records and
health-history records go through this narrow interface, so the import
engine never talks to the backend directly.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from src.exceptions import StoreError
from src.import_.models import PersistedRecord
from src.settings import settings

logger = logging.getLogger(__name__)

# Rows read per request when scanning a column
SCAN_PAGE_SIZE = 1000

_RESERVED = set(',.:()"\\')


def quote_value(value: Any) -> str:
    """
    Quote a value for use inside an `in.(...)` list or an `or=(...)` tree.

    PostgREST splits those on commas and parentheses, so values containing
    reserved characters or whitespace go in double quotes with `"` and `\\`
    backslash-escaped.
    """
    text = str(value)
    if not any(ch in _RESERVED or ch.isspace() for ch in text):
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class Filter:
    """A PostgREST column filter, e.g. Filter("role", "eq", "admin")."""

    field: str
    op: str
    value: Any

    def to_param(self) -> tuple[str, str]:
        if self.op == "in":
            values = ",".join(quote_value(v) for v in self.value)
            return self.field, f"in.({values})"
        return self.field, f"{self.op}.{self.value}"


@dataclass(frozen=True)
class Search:
    """Case-insensitive substring search across several columns."""

    fields: tuple[str, ...]
    term: str

    def to_param(self) -> tuple[str, str]:
        pattern = quote_value(f"*{self.term}*")
        clauses = ",".join(f"{name}.ilike.{pattern}" for name in self.fields)
        return "or", f"({clauses})"


class RecordStore(Protocol):
    """Persistence operations used by the import engine and admin services."""

    async def query_by_field(
        self, table: str, field: str, value: Any
    ) -> list[PersistedRecord]: ...

    async def query_max(self, table: str, field: str) -> Any | None: ...

    async def insert(self, table: str, fields: dict[str, Any]) -> PersistedRecord: ...

    async def update(
        self, table: str, record_id: Any, fields: dict[str, Any]
    ) -> PersistedRecord: ...

    async def delete(self, table: str, record_id: Any) -> None: ...

    async def get(self, table: str, record_id: Any) -> PersistedRecord | None: ...

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        search: Search | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[PersistedRecord]: ...

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int: ...


class RecordStoreService:
    """HTTP client for the Supabase PostgREST API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        page_size: int = SCAN_PAGE_SIZE,
    ):
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_service_key
        self.timeout = timeout or settings.supabase_timeout
        self._transport = transport
        self.page_size = page_size
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        table: str,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"Database error: {_error_message(e.response)}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(f"Record store unavailable: {e}") from e
        return response

    async def health_check(self) -> bool:
        """Check that the PostgREST endpoint answers."""
        client = await self._get_client()
        try:
            response = await client.get("/")
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.warning("Record store health check failed: %s", e)
            return False

    async def query_by_field(
        self, table: str, field: str, value: Any
    ) -> list[PersistedRecord]:
        return await self.query(table, filters=[Filter(field, "eq", value)])

    async def query_max(self, table: str, field: str) -> Any | None:
        """
        Highest integer value of `field`, or None for an empty table.

        Identifier columns may be text, and PostgREST orders text lexically
        ("9" after "10"), so the column is read page by page and compared as
        integers. When no value is integral the first non-empty value is
        returned as-is for the caller to reject.
        """
        highest: int | None = None
        first_value: Any = None
        offset = 0
        while True:
            response = await self._request(
                "GET",
                table,
                params=[
                    ("select", field),
                    ("order", f"{field}.asc"),
                    ("limit", str(self.page_size)),
                    ("offset", str(offset)),
                ],
            )
            rows = response.json()
            for row in rows:
                value = row.get(field)
                if value is None or value == "":
                    continue
                if first_value is None:
                    first_value = value
                number = _as_int(value)
                if number is not None and (highest is None or number > highest):
                    highest = number
            if len(rows) < self.page_size:
                break
            offset += self.page_size

        return highest if highest is not None else first_value

    async def insert(self, table: str, fields: dict[str, Any]) -> PersistedRecord:
        response = await self._request(
            "POST",
            table,
            json=fields,
            headers={"Prefer": "return=representation"},
        )
        return _single_record(response)

    async def update(
        self, table: str, record_id: Any, fields: dict[str, Any]
    ) -> PersistedRecord:
        response = await self._request(
            "PATCH",
            table,
            params=[("id", f"eq.{record_id}")],
            json=fields,
            headers={"Prefer": "return=representation"},
        )
        return _single_record(response)

    async def delete(self, table: str, record_id: Any) -> None:
        await self._request("DELETE", table, params=[("id", f"eq.{record_id}")])

    async def get(self, table: str, record_id: Any) -> PersistedRecord | None:
        records = await self.query(table, filters=[Filter("id", "eq", record_id)])
        return records[0] if records else None

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        search: Search | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[PersistedRecord]:
        params = [("select", "*")]
        params.extend(f.to_param() for f in filters)
        if search is not None and search.term:
            params.append(search.to_param())
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", table, params=params)
        return [PersistedRecord.from_row(row) for row in response.json()]

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        params = [("select", "id")]
        params.extend(f.to_param() for f in filters)
        response = await self._request(
            "HEAD", table, params=params, headers={"Prefer": "count=exact"}
        )
        # Content-Range: "*/42" or "0-9/42"
        content_range = response.headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        try:
            return int(total)
        except ValueError as e:
            raise StoreError(f"Unexpected Content-Range header: {content_range!r}") from e


def _single_record(response: httpx.Response) -> PersistedRecord:
    rows = response.json()
    if not rows:
        raise StoreError("No data returned from database operation")
    return PersistedRecord.from_row(rows[0])


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return str(body)
