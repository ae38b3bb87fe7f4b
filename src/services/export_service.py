"""
Spreadsheet exports of users and health-history records.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from src.exceptions import ValidationError
from src.import_.normalization import to_display_date
from src.import_.profiles import (
    HEALTH_HISTORY_TABLE,
    HEALTH_HISTORY_TEXT_FIELDS,
    USERS_TABLE,
)
from src.import_.spreadsheet import write_workbook
from src.services.record_store_service import Filter, RecordStore
from src.services.user_service import UserService

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

USER_EXPORT_COLUMNS = (
    "First Name",
    "Middle Name",
    "Last Name",
    "Date of Birth",
    "Gender",
    "Phone",
    "Email",
    "Role",
    "Status",
    "Created At",
)

HEALTH_HISTORY_EXPORT_COLUMNS = (
    "User ID",
    "First Name",
    "Last Name",
    "Created At",
    *(label for _, label in HEALTH_HISTORY_TEXT_FIELDS),
)


@dataclass
class ExportFile:
    """A generated workbook ready for download."""

    filename: str
    content: bytes
    row_count: int
    media_type: str = XLSX_MEDIA_TYPE


def format_long_date(value: Any) -> str:
    """Format a timestamp as e.g. "April 29th, 2023"."""
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return str(value)
    return f"{moment:%B} {_ordinal(moment.day)}, {moment.year}"


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _display_birth_date(value: Any) -> str:
    if not value:
        return ""
    try:
        return to_display_date(str(value))
    except ValueError:
        return str(value)


class ExportService:
    """Builds .xlsx exports from the record store."""

    def __init__(self, store: RecordStore):
        self.store = store
        self.users = UserService(store)

    async def export(self, kind: str, tab: str = "patient") -> ExportFile:
        if kind == "users":
            return await self.export_users(tab)
        if kind == "health_history":
            return await self.export_health_history()
        raise ValidationError(
            f"Unknown export type '{kind}'. Expected one of: users, health_history"
        )

    async def export_users(self, tab: str) -> ExportFile:
        """Export the users of one role tab."""
        users = await self.users.list_users(tab)
        rows = [
            {
                "First Name": user.get("first_name"),
                "Middle Name": user.get("middle_name"),
                "Last Name": user.get("last_name"),
                "Date of Birth": _display_birth_date(user.get("date_of_birth")),
                "Gender": user.get("gender"),
                "Phone": user.get("phone"),
                "Email": user.get("email"),
                "Role": user.get("role"),
                "Status": user.get("status"),
                "Created At": format_long_date(user.get("created_at")),
            }
            for user in users
        ]
        content = write_workbook(rows, "Users", columns=USER_EXPORT_COLUMNS)
        logger.info("Exported %d %s users", len(rows), tab)
        return ExportFile(f"{tab}_users.xlsx", content, len(rows))

    async def export_health_history(self, today: date | None = None) -> ExportFile:
        """Export all health-history records, newest first, with subject names."""
        records = await self.store.query(
            HEALTH_HISTORY_TABLE, order_by="created_at", descending=True
        )
        if not records:
            raise ValidationError("There are no records to export.")

        user_ids = sorted(
            {r.fields["user_id"] for r in records if r.fields.get("user_id") is not None},
            key=str,
        )
        names: dict[str, dict[str, Any]] = {}
        if user_ids:
            users = await self.store.query(
                USERS_TABLE, filters=[Filter("id", "in", user_ids)]
            )
            names = {str(u.id): u.fields for u in users}

        rows = []
        for record in records:
            fields = record.fields
            user = names.get(str(fields.get("user_id")), {})
            row = {
                "User ID": fields.get("user_id"),
                "First Name": user.get("first_name") or "",
                "Last Name": user.get("last_name") or "",
                "Created At": format_long_date(fields.get("created_at")),
            }
            for name, label in HEALTH_HISTORY_TEXT_FIELDS:
                row[label] = fields.get(name) or ""
            rows.append(row)

        content = write_workbook(
            rows, "Health History Records", columns=HEALTH_HISTORY_EXPORT_COLUMNS
        )
        today = today or datetime.now(timezone.utc).date()
        return ExportFile(
            f"health_history_records_{today.isoformat()}.xlsx", content, len(rows)
        )
