"""
Patient account request review.

Patients sign up through the mobile app, which stores a request (with an ID
photo) in the request table. An admin approves the request into a patient
user or rejects it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.exceptions import NotFoundError
from src.import_.matching.identifier_sequence import make_sequence
from src.import_.profiles import (
    ACCOUNT_REQUESTS_TABLE,
    PATIENT_ROLE,
    USERS_PROFILE,
    USERS_TABLE,
)
from src.services.record_store_service import RecordStore, Search
from src.services.sms_service import Notifier
from src.services.user_service import ACTIVE, NAME_SEARCH_FIELDS
from src.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class ApprovalResult:
    """Outcome of approving an account request."""

    request_id: Any
    user: dict[str, Any]
    notified: bool
    warnings: list[str] = field(default_factory=list)


class AccountRequestService:
    """Approves and rejects patient account requests."""

    def __init__(self, store: RecordStore, notifier: Notifier | None = None):
        self.store = store
        self.notifier = notifier

    async def list_requests(self, search: str | None = None) -> list[dict[str, Any]]:
        records = await self.store.query(
            ACCOUNT_REQUESTS_TABLE,
            search=Search(NAME_SEARCH_FIELDS, search.strip()) if search else None,
            order_by="created_at",
            descending=True,
        )
        return [r.fields for r in records]

    async def get_request(self, request_id: Any) -> dict[str, Any]:
        record = await self.store.get(ACCOUNT_REQUESTS_TABLE, request_id)
        if record is None:
            raise NotFoundError(f"Account request {request_id} not found")
        return record.fields

    async def approve(
        self, request_id: Any, now: datetime | None = None
    ) -> ApprovalResult:
        """
        Turn an account request into an active patient user.

        The user gets the next sequential ID and keeps the request's ID photo;
        the request is then removed. The welcome SMS is best-effort.

        Raises:
            NotFoundError: If the request does not exist
            BatchSetupError: If the next user ID cannot be determined
            StoreError: If inserting the user or deleting the request fails
        """
        request = await self.get_request(request_id)
        now = now or datetime.now(timezone.utc)

        fields = {
            "first_name": request.get("first_name"),
            "middle_name": request.get("middle_name") or None,
            "last_name": request.get("last_name"),
            "date_of_birth": request.get("date_of_birth"),
            "gender": request.get("gender"),
            "phone": request.get("phone"),
            "role": PATIENT_ROLE,
            "created_at": now.isoformat(),
            "img_url": request.get("id_photo_url"),
            "uid": str(request_id),
            "email": None,
            "status": ACTIVE,
        }

        sequence = make_sequence(
            settings.identifier_strategy, self.store, USERS_PROFILE
        )
        async with sequence.batch_lock():
            await sequence.start()
            new_id = sequence.peek()
            if new_id is not None:
                fields["id"] = new_id
            user = await self.store.insert(USERS_TABLE, fields)
            sequence.advance()

        await self.store.delete(ACCOUNT_REQUESTS_TABLE, request_id)
        logger.info("Approved account request %s as user %s", request_id, user.id)

        result = ApprovalResult(request_id=request_id, user=user.fields, notified=False)
        phone = fields["phone"]
        if self.notifier is None or not phone:
            result.warnings.append("Welcome SMS not sent (no phone number or SMS service)")
            return result

        try:
            await self.notifier.notify(str(phone), str(fields["first_name"] or ""))
            result.notified = True
        except Exception as e:
            logger.warning("Welcome SMS failed for user %s: %s", user.id, e)
            result.warnings.append(f"Account approved but welcome SMS failed: {e}")
        return result

    async def reject(self, request_id: Any) -> None:
        """Discard an account request."""
        await self.get_request(request_id)
        await self.store.delete(ACCOUNT_REQUESTS_TABLE, request_id)
        logger.info("Rejected account request %s", request_id)
