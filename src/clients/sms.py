"""SMS service dependency provider."""

from src.services.sms_service import SmsService

# Module-level singleton
_sms_service: SmsService | None = None


def get_sms_service() -> SmsService:
    """Get the SMS service singleton."""
    global _sms_service
    if _sms_service is None:
        _sms_service = SmsService()
    return _sms_service


async def close_sms_service() -> None:
    """Close the singleton's HTTP client, if one was created."""
    global _sms_service
    if _sms_service is not None:
        await _sms_service.close()
        _sms_service = None
