"""
Field normalization for spreadsheet imports.

Converts heterogeneous cell values into the canonical forms used for
matching and storage:

- Dates: stored as YYYY-MM-DD, displayed as DD/MM/YYYY
- Phone numbers: +63 followed by the subscriber digits
- Gender: M / F
- Column labels: lowercase alphanumerics only, so "Family History Other",
  "family_history_other" and "Family-History-Other" are the same column
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any

from dateutil import parser as dateutil_parser

from src.exceptions import (
    InvalidDateFormat,
    InvalidGenderValue,
    InvalidPhoneFormat,
    InvalidTimestampFormat,
)

# Days between the spreadsheet epoch (1899-12-30) and the Unix epoch
SPREADSHEET_EPOCH_OFFSET_DAYS = 25569
SECONDS_PER_DAY = 86400

COUNTRY_CALLING_CODE = "63"

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DMY_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
_PARTIAL_TIME_RE = re.compile(r"^(\d{2}):(\d{2})\.(\d{1,3})$")
_STRICT_MOBILE_RE = re.compile(r"^\+639\d{9}$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_NON_DIGIT_RE = re.compile(r"\D")


def normalize_date(value: Any) -> str:
    """
    Normalize a date cell to YYYY-MM-DD.

    Accepted inputs, tried in order:
        "1990-05-17"   -> "1990-05-17"
        "17/05/1990"   -> "1990-05-17"
        33010 / "33010" (spreadsheet serial) -> "1990-05-17"
        date / datetime objects from the spreadsheet reader
        anything dateutil can parse (day-first)

    Raises:
        InvalidDateFormat: If no rule yields a valid calendar date
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _date_from_serial(value)

    text = "" if value is None else str(value).strip()
    if not text:
        raise InvalidDateFormat("Invalid date format: empty value")

    if _ISO_DATE_RE.match(text):
        return _checked_date(text, text)

    if _DMY_DATE_RE.match(text):
        day, month, year = text.split("/")
        return _checked_date(f"{year}-{month}-{day}", text)

    try:
        serial = float(text)
    except ValueError:
        pass
    else:
        return _date_from_serial(serial)

    try:
        parsed = dateutil_parser.parse(text, dayfirst=True)
    except (ValueError, OverflowError) as e:
        raise InvalidDateFormat(f"Invalid date format: {text}") from e
    return parsed.date().isoformat()


def to_display_date(iso_date: str) -> str:
    """Convert YYYY-MM-DD to DD/MM/YYYY."""
    year, month, day = iso_date.split("-")
    return f"{day}/{month}/{year}"


def _checked_date(iso_text: str, original: str) -> str:
    try:
        return date.fromisoformat(iso_text).isoformat()
    except ValueError as e:
        raise InvalidDateFormat(f"Invalid date format: {original}") from e


def _date_from_serial(serial: float) -> str:
    """Convert a spreadsheet serial day number to YYYY-MM-DD (UTC)."""
    seconds = (serial - SPREADSHEET_EPOCH_OFFSET_DAYS) * SECONDS_PER_DAY
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).date().isoformat()
    except (OverflowError, OSError, ValueError) as e:
        raise InvalidDateFormat(f"Invalid spreadsheet date: {serial}") from e


def normalize_phone(value: Any, strict: bool = False) -> str:
    """
    Normalize a phone number to +63 international form.

    Examples:
        "9171234567"     -> "+639171234567"
        "639171234567"   -> "+639171234567"
        "+63 917 123 4567" -> "+639171234567"

    Digit counts are not checked unless strict is set, in which case the
    result must be a Philippine mobile number (+639 and nine more digits).
    """
    digits = _NON_DIGIT_RE.sub("", _cell_to_text(value))
    if not digits:
        if strict:
            raise InvalidPhoneFormat("Invalid phone number: empty value")
        return ""

    if digits.startswith(COUNTRY_CALLING_CODE):
        phone = f"+{digits}"
    else:
        phone = f"+{COUNTRY_CALLING_CODE}{digits}"

    if strict and not _STRICT_MOBILE_RE.match(phone):
        raise InvalidPhoneFormat(f"Invalid phone number: {value}")
    return phone


def normalize_gender(value: Any, strict: bool = False) -> str:
    """Map male/m to M and female/f to F; other values pass through unless strict."""
    text = _cell_to_text(value)
    lowered = text.lower()
    if lowered in ("male", "m"):
        return "M"
    if lowered in ("female", "f"):
        return "F"
    if strict:
        raise InvalidGenderValue(f"Invalid gender: {text or 'empty value'}")
    return text


def normalize_timestamp(value: Any, now: datetime) -> datetime:
    """
    Normalize an imported timestamp to an aware UTC datetime.

    Full timestamps are parsed as-is (naive values are taken as UTC). A
    partial "MM:SS.F" fragment, as produced by spreadsheet time formatting,
    is placed on now's calendar date at hour zero.

    Raises:
        InvalidTimestampFormat: If the value is neither
    """
    if isinstance(value, datetime):
        return _as_utc(value)

    text = _cell_to_text(value)
    if not text:
        raise InvalidTimestampFormat("Invalid timestamp: empty value")

    fragment = _PARTIAL_TIME_RE.match(text)
    if fragment:
        minutes, seconds, fraction = fragment.groups()
        milliseconds = int(fraction.ljust(3, "0"))
        try:
            return datetime(
                now.year,
                now.month,
                now.day,
                0,
                int(minutes),
                int(seconds),
                milliseconds * 1000,
                tzinfo=now.tzinfo or timezone.utc,
            ).astimezone(timezone.utc)
        except ValueError as e:
            raise InvalidTimestampFormat(f"Invalid time format: {text}") from e

    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        return _as_utc(dateutil_parser.parse(text))
    except (ValueError, OverflowError) as e:
        raise InvalidTimestampFormat(f"Invalid time format: {text}") from e


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_column_name(label: str) -> str:
    """Lowercase a column label and drop everything but letters and digits."""
    return _NON_ALNUM_RE.sub("", label.lower())


def find_field(row: Mapping[str, Any], *names: str) -> Any:
    """
    Return the raw cell value of the first column matching any of names.

    Columns are compared by normalized label. Returns None if absent.
    """
    wanted = {normalize_column_name(name) for name in names}
    for key, value in row.items():
        if normalize_column_name(str(key)) in wanted:
            return value
    return None


def find_field_value(row: Mapping[str, Any], *names: str) -> str:
    """Like find_field, but as stripped text with "" for absent columns."""
    return _cell_to_text(find_field(row, *names))


def _cell_to_text(value: Any) -> str:
    """Stringify a cell value; integral floats lose their trailing .0."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value).strip()
