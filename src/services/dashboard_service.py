"""Aggregate statistics for the admin dashboard."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from src.import_.models import PersistedRecord
from src.import_.profiles import ACCOUNT_REQUESTS_TABLE, ADMIN_ROLE, USERS_TABLE
from src.services.record_store_service import Filter, RecordStore

logger = logging.getLogger(__name__)

GROWTH_DAYS = 7


@dataclass
class GrowthPoint:
    date: str  # MM/dd
    count: int


@dataclass
class DashboardStats:
    total_users: int
    pending_verifications: int
    total_records: int
    active_users: int
    user_growth: list[GrowthPoint]


class DashboardService:
    def __init__(self, store: RecordStore):
        self.store = store

    async def get_stats(self, now: datetime | None = None) -> DashboardStats:
        """
        Collect dashboard counters and the user growth of the last 7 days
        (today included, days without sign-ups reported as zero).
        """
        now = now or datetime.now(timezone.utc)

        total_users, pending, active = await asyncio.gather(
            self.store.count(USERS_TABLE),
            self.store.count(ACCOUNT_REQUESTS_TABLE),
            self.store.count(
                USERS_TABLE,
                filters=[
                    Filter("isUserOnline", "eq", "yes"),
                    Filter("role", "neq", ADMIN_ROLE),
                ],
            ),
        )

        first_day = now.date() - timedelta(days=GROWTH_DAYS - 1)
        since = datetime.combine(first_day, time.min, tzinfo=now.tzinfo or timezone.utc)
        recent = await self.store.query(
            USERS_TABLE,
            filters=[
                Filter("created_at", "gte", since.isoformat()),
                Filter("created_at", "lte", now.isoformat()),
            ],
            order_by="created_at",
        )

        return DashboardStats(
            total_users=total_users,
            pending_verifications=pending,
            total_records=total_users + pending,
            active_users=active,
            user_growth=user_growth(recent, now),
        )


def user_growth(records: list[PersistedRecord], now: datetime) -> list[GrowthPoint]:
    """Count records per calendar day for the last 7 days."""
    days = [now.date() - timedelta(days=offset) for offset in range(GROWTH_DAYS - 1, -1, -1)]
    counts = dict.fromkeys(days, 0)
    tz = now.tzinfo or timezone.utc
    for record in records:
        if record.created_at is None:
            continue
        day = record.created_at.astimezone(tz).date()
        if day in counts:
            counts[day] += 1
    return [GrowthPoint(date=f"{day:%m/%d}", count=counts[day]) for day in days]
