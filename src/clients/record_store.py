"""Record store service dependency provider."""

from src.services.record_store_service import RecordStoreService

# Module-level singleton
_record_store: RecordStoreService | None = None


def get_record_store() -> RecordStoreService:
    """Get the record store service singleton."""
    global _record_store
    if _record_store is None:
        _record_store = RecordStoreService()
    return _record_store


async def close_record_store() -> None:
    """Close the singleton's HTTP client, if one was created."""
    global _record_store
    if _record_store is not None:
        await _record_store.close()
        _record_store = None
