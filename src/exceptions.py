"""Custom exceptions for the mHealth admin service."""


class MHealthError(Exception):
    """Base exception for mHealth errors."""

    pass


class ValidationError(MHealthError):
    """Error during input validation."""

    pass


class NotFoundError(MHealthError):
    """Requested record does not exist."""

    pass


class ImportRowError(MHealthError):
    """Error confined to a single imported row. Never aborts a batch."""

    pass


class InvalidDateFormat(ImportRowError):
    """Value could not be read as a calendar date."""

    pass


class InvalidPhoneFormat(ImportRowError):
    """Phone number failed strict validation."""

    pass


class InvalidGenderValue(ImportRowError):
    """Gender value failed strict validation."""

    pass


class InvalidTimestampFormat(ImportRowError):
    """Value could not be read as a timestamp or time fragment."""

    pass


class MissingRequiredField(ImportRowError):
    """A required column is absent or empty."""

    def __init__(self, field: str):
        super().__init__(f"Missing required field: {field}")
        self.field = field


class StoreError(MHealthError):
    """Error returned by the record store."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotificationError(MHealthError):
    """Error while sending a notification."""

    pass


class BatchSetupError(MHealthError):
    """Batch cannot start safely (e.g. the current max identifier is unreadable)."""

    pass
