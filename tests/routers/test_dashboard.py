"""Tests for dashboard endpoint."""

import pytest

from src.import_.profiles import ACCOUNT_REQUESTS_TABLE, USERS_TABLE
from tests.conftest import ClientFactory, InMemoryRecordStore, make_user


class TestDashboardStats:
    """Tests for GET /dashboard/stats."""

    @pytest.mark.anyio
    async def test_stats(
        self, client_factory: ClientFactory, record_store: InMemoryRecordStore
    ) -> None:
        record_store.rows(USERS_TABLE).extend(
            [make_user(1, isUserOnline="yes"), make_user(2)]
        )
        record_store.rows(ACCOUNT_REQUESTS_TABLE).append({"id": 1})

        async with client_factory() as client:
            response = await client.get("/dashboard/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_users"] == 2
        assert data["pending_verifications"] == 1
        assert data["total_records"] == 3
        assert data["active_users"] == 1
        assert len(data["user_growth"]) == 7
        assert set(data["user_growth"][0]) == {"date", "count"}
