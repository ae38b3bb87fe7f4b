"""
SMS gateway client for account notifications.

Sends the welcome message new users receive once their account exists,
through the IPROG SMS HTTP API.
"""

import logging
from datetime import date
from typing import Protocol

import httpx
from pydantic import BaseModel

from src.exceptions import NotificationError
from src.settings import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Best-effort notification of a newly created subject."""

    async def notify(self, contact_address: str, display_name: str) -> None: ...


class SmsResult(BaseModel):
    """Accepted message as reported by the gateway."""

    message_id: str | None = None
    phone_number: str


def format_gateway_phone(phone: str) -> str:
    """
    Convert a stored phone number to the gateway's 63XXXXXXXXXX form.

    Examples:
        "+639171234567" -> "639171234567"
        "09171234567"   -> "639171234567"
    """
    digits = phone.strip()
    if digits.startswith("+"):
        digits = digits[1:]
    if digits.startswith("0"):
        digits = "63" + digits[1:]
    return digits


def build_welcome_message(phone: str, first_name: str, today: date) -> str:
    """Build the account-created SMS text."""
    created_on = f"{today:%B} {today.day}, {today.year}"
    return (
        f"MHealth: Your account has been created on {created_on}. "
        f"Welcome to MHealth, {first_name}! "
        f"You can login using your mobile number {phone}. "
        "If you have any questions, please contact our support team."
    )


class SmsService:
    """HTTP client for the IPROG SMS API."""

    def __init__(
        self,
        api_url: str | None = None,
        api_token: str | None = None,
        provider: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url or settings.sms_api_url
        self.api_token = api_token if api_token is not None else settings.sms_api_token
        self.provider = provider if provider is not None else settings.sms_provider
        self.timeout = timeout or settings.sms_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def notify(self, contact_address: str, display_name: str) -> None:
        """Send the welcome SMS. Raises NotificationError on any failure."""
        await self.send_welcome(contact_address, display_name)

    async def send_welcome(
        self, phone: str, first_name: str, today: date | None = None
    ) -> SmsResult:
        message = build_welcome_message(phone, first_name, today or date.today())
        return await self.send_message(phone, message)

    async def send_message(self, phone: str, message: str) -> SmsResult:
        """
        Send a single SMS.

        Args:
            phone: Recipient in any stored form (+63..., 0...)
            message: Message text

        Returns:
            SmsResult with the gateway message ID

        Raises:
            NotificationError: If the gateway is unconfigured, unreachable,
                or rejects the message
        """
        if not self.api_token:
            raise NotificationError("SMS gateway is not configured (missing API token)")

        gateway_phone = format_gateway_phone(phone)
        client = await self._get_client()

        try:
            response = await client.post(
                self.api_url,
                params={
                    "api_token": self.api_token,
                    "message": message,
                    "phone_number": gateway_phone,
                    "sms_provider": str(self.provider),
                },
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"SMS gateway HTTP error: {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"SMS gateway request failed: {e}") from e

        if result.get("status") != 200:
            raise NotificationError(result.get("message") or "Failed to send SMS")

        message_id = result.get("message_id")
        logger.info("SMS sent to %s (message_id=%s)", gateway_phone, message_id)
        return SmsResult(
            message_id=str(message_id) if message_id is not None else None,
            phone_number=gateway_phone,
        )
