"""Test configuration and fixtures."""

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Generator, Protocol
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.clients.record_store import get_record_store
from src.clients.sms import get_sms_service
from src.core.auth import AuthenticatedUser, get_current_user
from src.exceptions import StoreError
from src.import_.models import PersistedRecord
from src.main import app
from src.services.record_store_service import Filter, Search
from src.services.sms_service import SmsResult, SmsService

FIXED_NOW = datetime(2025, 3, 10, 8, 30, tzinfo=timezone.utc)


class InMemoryRecordStore:
    """RecordStore backed by dicts, with hooks for simulating failures."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.fail_insert: Callable[[dict[str, Any]], bool] | None = None
        self.fail_query_max = False
        self.calls: list[tuple[str, str]] = []

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    async def health_check(self) -> bool:
        return True

    async def query_by_field(
        self, table: str, field: str, value: Any
    ) -> list[PersistedRecord]:
        self.calls.append(("query_by_field", table))
        return [
            PersistedRecord.from_row(row)
            for row in self.rows(table)
            if row.get(field) is not None and str(row.get(field)) == str(value)
        ]

    async def query_max(self, table: str, field: str) -> Any | None:
        self.calls.append(("query_max", table))
        if self.fail_query_max:
            raise StoreError("Database error: connection refused", status_code=503)
        values = [row[field] for row in self.rows(table) if row.get(field) is not None]
        return max(values, key=int) if values else None

    async def insert(self, table: str, fields: dict[str, Any]) -> PersistedRecord:
        self.calls.append(("insert", table))
        if self.fail_insert is not None and self.fail_insert(fields):
            raise StoreError("Database error: simulated insert failure", status_code=500)
        row = dict(fields)
        existing = self.rows(table)
        if row.get("id") is None:
            row["id"] = max((int(r["id"]) for r in existing), default=0) + 1
        elif any(str(r.get("id")) == str(row["id"]) for r in existing):
            raise StoreError(
                "Database error: duplicate key value violates unique constraint",
                status_code=409,
            )
        existing.append(row)
        return PersistedRecord.from_row(row)

    async def update(
        self, table: str, record_id: Any, fields: dict[str, Any]
    ) -> PersistedRecord:
        self.calls.append(("update", table))
        for row in self.rows(table):
            if str(row.get("id")) == str(record_id):
                row.update(fields)
                return PersistedRecord.from_row(row)
        raise StoreError("No data returned from database operation")

    async def delete(self, table: str, record_id: Any) -> None:
        self.calls.append(("delete", table))
        self.tables[table] = [
            row for row in self.rows(table) if str(row.get("id")) != str(record_id)
        ]

    async def get(self, table: str, record_id: Any) -> PersistedRecord | None:
        for row in self.rows(table):
            if str(row.get("id")) == str(record_id):
                return PersistedRecord.from_row(row)
        return None

    async def query(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        search: Search | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[PersistedRecord]:
        rows = [row for row in self.rows(table) if _matches(row, filters, search)]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return [PersistedRecord.from_row(row) for row in rows]

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        return sum(1 for row in self.rows(table) if _matches(row, filters, None))


def _matches(
    row: dict[str, Any], filters: Sequence[Filter], search: Search | None
) -> bool:
    for f in filters:
        value = row.get(f.field)
        if f.op == "eq" and str(value) != str(f.value):
            return False
        if f.op == "neq" and str(value) == str(f.value):
            return False
        if f.op == "in" and str(value) not in {str(v) for v in f.value}:
            return False
        if f.op == "gte" and (value is None or str(value) < str(f.value)):
            return False
        if f.op == "lte" and (value is None or str(value) > str(f.value)):
            return False
    if search is not None and search.term:
        term = search.term.lower()
        return any(term in str(row.get(name) or "").lower() for name in search.fields)
    return True


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Configure pytest-anyio to use asyncio."""
    return "asyncio"


@pytest.fixture
def record_store() -> InMemoryRecordStore:
    """Empty in-memory record store."""
    return InMemoryRecordStore()


@pytest.fixture
def mock_sms_service() -> AsyncMock:
    """Mock SMS service for testing."""
    mock = AsyncMock(spec=SmsService)
    mock.notify.return_value = None
    mock.send_welcome.return_value = SmsResult(
        message_id="msg-1", phone_number="639171234567"
    )
    return mock


@pytest.fixture
def mock_authenticated_user() -> AuthenticatedUser:
    """Mock authenticated caller for testing."""
    return AuthenticatedUser(service_name="test-dashboard")


class ClientFactory(Protocol):
    """Protocol for client factory fixture."""

    def __call__(self) -> AsyncClient: ...


@pytest.fixture
def client_factory(
    record_store: InMemoryRecordStore,
    mock_sms_service: AsyncMock,
    mock_authenticated_user: AuthenticatedUser,
) -> Generator[ClientFactory, None, None]:
    """Factory for creating test clients with mocked dependencies."""

    def _create_client() -> AsyncClient:
        app.dependency_overrides[get_record_store] = lambda: record_store
        app.dependency_overrides[get_sms_service] = lambda: mock_sms_service
        app.dependency_overrides[get_current_user] = lambda: mock_authenticated_user

        transport = ASGITransport(app=app)
        return AsyncClient(transport=transport, base_url="http://testserver")

    yield _create_client

    app.dependency_overrides.clear()


@pytest.fixture
async def client(
    client_factory: ClientFactory,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client for testing endpoints."""
    async with client_factory() as c:
        yield c


def make_user(user_id: int, **fields: Any) -> dict[str, Any]:
    """A stored user row with sensible defaults."""
    row: dict[str, Any] = {
        "id": user_id,
        "first_name": "Juan",
        "middle_name": None,
        "last_name": "Dela Cruz",
        "date_of_birth": "1990-05-17",
        "gender": "M",
        "phone": f"+63917000{user_id:04d}",
        "email": None,
        "role": "patient",
        "status": "active",
        "created_at": "2024-01-01T00:00:00+00:00",
        "isUserOnline": "no",
    }
    row.update(fields)
    return row
