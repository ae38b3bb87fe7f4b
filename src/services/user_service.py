"""
User account management.

Lists users by role tab, creates users manually, toggles their status,
deletes them and re-sends the welcome SMS.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Literal

from src.exceptions import ImportRowError, NotFoundError, ValidationError
from src.import_.matching.identifier_sequence import make_sequence
from src.import_.normalization import normalize_date, normalize_gender, normalize_phone
from src.import_.profiles import (
    ADMIN_ROLE,
    HEALTH_WORKER_ROLES,
    PATIENT_ROLE,
    USERS_PROFILE,
    USERS_TABLE,
)
from src.services.record_store_service import Filter, RecordStore, Search
from src.services.sms_service import SmsResult, SmsService
from src.settings import settings

logger = logging.getLogger(__name__)

UserTab = Literal["admin", "health-workers", "patient"]
USER_TABS: tuple[str, ...] = ("admin", "health-workers", "patient")

SORTABLE_COLUMNS = (
    "first_name",
    "last_name",
    "role",
    "phone",
    "status",
    "created_at",
    "date_of_birth",
)

NAME_SEARCH_FIELDS = ("first_name", "last_name", "middle_name")

ACTIVE = "active"
INACTIVE = "inactive"


def tab_filters(tab: str) -> list[Filter]:
    """Role filter for a user-management tab."""
    if tab == "admin":
        return [Filter("role", "eq", ADMIN_ROLE)]
    if tab == "health-workers":
        return [Filter("role", "in", HEALTH_WORKER_ROLES)]
    if tab == "patient":
        return [Filter("role", "eq", PATIENT_ROLE)]
    raise ValidationError(f"Unknown tab '{tab}'. Expected one of: {', '.join(USER_TABS)}")


def sort_users(
    users: Sequence[dict[str, Any]], column: str = "first_name", descending: bool = False
) -> list[dict[str, Any]]:
    """
    Sort user rows the way the user table is displayed.

    Dates sort chronologically, status puts active users first (ascending),
    and everything else sorts case-insensitively as text.
    """
    if column not in SORTABLE_COLUMNS:
        raise ValidationError(
            f"Cannot sort by '{column}'. Expected one of: {', '.join(SORTABLE_COLUMNS)}"
        )

    if column == "status":
        return sorted(
            users, key=lambda u: u.get("status") != ACTIVE, reverse=descending
        )

    if column in ("created_at", "date_of_birth"):
        # Missing dates go last regardless of direction
        dated = [u for u in users if u.get(column)]
        undated = [u for u in users if not u.get(column)]
        return sorted(dated, key=lambda u: str(u[column]), reverse=descending) + undated

    return sorted(
        users, key=lambda u: str(u.get(column) or "").lower(), reverse=descending
    )


class UserService:
    """User management against the users table."""

    def __init__(self, store: RecordStore, sms: SmsService | None = None):
        self.store = store
        self.sms = sms

    async def list_users(
        self,
        tab: str,
        search: str | None = None,
        sort_by: str = "first_name",
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """List users of a role tab, optionally filtered by a name search."""
        records = await self.store.query(
            USERS_TABLE,
            filters=tab_filters(tab),
            search=Search(NAME_SEARCH_FIELDS, search.strip()) if search else None,
        )
        return sort_users([r.fields for r in records], sort_by, descending)

    async def get_user(self, user_id: Any) -> dict[str, Any]:
        record = await self.store.get(USERS_TABLE, user_id)
        if record is None:
            raise NotFoundError(f"User {user_id} not found")
        return record.fields

    async def create_user(
        self, data: dict[str, Any], now: datetime | None = None
    ) -> dict[str, Any]:
        """
        Create a single user with the next sequential ID.

        Admins are identified by email, everyone else by phone number.

        Raises:
            ValidationError: If required contact details are missing or invalid
            BatchSetupError: If the next ID cannot be determined
            StoreError: If the insert fails
        """
        role = str(data.get("role") or PATIENT_ROLE).lower()
        try:
            date_of_birth = normalize_date(data.get("date_of_birth"))
        except ImportRowError as e:
            raise ValidationError(str(e)) from e

        if role == ADMIN_ROLE:
            if not data.get("email"):
                raise ValidationError("Email is required for admin users")
            phone, email = None, data["email"]
        else:
            phone = normalize_phone(data.get("phone"))
            if not phone:
                raise ValidationError("Phone number is required for non-admin users")
            email = None

        now = now or datetime.now(timezone.utc)
        fields = {
            "first_name": data["first_name"],
            "middle_name": data.get("middle_name") or None,
            "last_name": data["last_name"],
            "date_of_birth": date_of_birth,
            "gender": normalize_gender(data.get("gender")),
            "phone": phone,
            "email": email,
            "role": role,
            "status": ACTIVE,
            "created_at": now.isoformat(),
            "img_url": None,
            "isUserOnline": "no",
        }

        sequence = make_sequence(
            settings.identifier_strategy, self.store, USERS_PROFILE
        )
        async with sequence.batch_lock():
            await sequence.start()
            new_id = sequence.peek()
            if new_id is not None:
                fields["id"] = new_id
            record = await self.store.insert(USERS_TABLE, fields)
            sequence.advance()

        logger.info("Created %s user %s", role, record.id)
        return record.fields

    async def toggle_status(self, user_id: Any) -> dict[str, Any]:
        """Flip a user between active and inactive."""
        user = await self.get_user(user_id)
        new_status = INACTIVE if user.get("status") == ACTIVE else ACTIVE
        record = await self.store.update(USERS_TABLE, user_id, {"status": new_status})
        logger.info("User %s is now %s", user_id, new_status)
        return record.fields

    async def delete_user(self, user_id: Any) -> None:
        await self.get_user(user_id)
        await self.store.delete(USERS_TABLE, user_id)
        logger.info("Deleted user %s", user_id)

    async def send_welcome_sms(self, user_id: Any) -> SmsResult:
        """
        Send the welcome SMS to an existing user.

        Unlike the import's best-effort welcome, failures are raised so the
        operator sees them.

        Raises:
            NotFoundError: If the user does not exist
            ValidationError: If the user has no phone number
            NotificationError: If the gateway rejects the message
        """
        if self.sms is None:
            raise ValidationError("SMS service is not available")
        user = await self.get_user(user_id)
        phone = user.get("phone")
        if not phone:
            raise ValidationError(f"User {user_id} has no phone number")
        return await self.sms.send_welcome(str(phone), str(user.get("first_name") or ""))
