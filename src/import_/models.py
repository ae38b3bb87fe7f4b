"""Data model shared by the import matcher and engine."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dateutil import parser as dateutil_parser


class MatchReason(str, Enum):
    """Why an imported row was matched to an existing record."""

    EXTERNAL_ID = "external identifier match"
    PHONE_NUMBER = "phone number match"
    NAME_AND_BIRTH_DATE = "name and date of birth match"
    EXACT_TIMESTAMP = "exact timestamp match"
    MOST_RECENT = "most recent record for identifier"


class OutcomeStatus(str, Enum):
    """Per-row result of applying a batch."""

    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class PersistedRecord:
    """A row as stored in the record store."""

    id: Any
    fields: dict[str, Any]
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any], id_field: str = "id") -> "PersistedRecord":
        return cls(
            id=row.get(id_field),
            fields=dict(row),
            created_at=_parse_created_at(row.get("created_at")),
        )


def _parse_created_at(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = dateutil_parser.isoparse(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ImportRow:
    """One normalized row of tabular input."""

    row_number: int
    raw: dict[str, Any]
    fields: dict[str, Any] = field(default_factory=dict)
    # Optional columns that were left empty; updates leave them untouched
    blank_names: tuple[str, ...] = ()
    external_id: str = ""
    # Only set when the input carried its own timestamp
    timestamp: datetime | None = None

    @property
    def payload_fields(self) -> dict[str, Any]:
        """Fields carrying a value, as written when updating a matched record."""
        return {k: v for k, v in self.fields.items() if k not in self.blank_names}


@dataclass(frozen=True)
class MatchResult:
    """Classification of an imported row: NEW, or matched to one record."""

    record: PersistedRecord | None = None
    reason: MatchReason | None = None
    detail: str | None = None

    @property
    def is_new(self) -> bool:
        return self.record is None

    @classmethod
    def no_match(cls) -> "MatchResult":
        return cls()


@dataclass
class PreviewEntry:
    """A classified row awaiting confirmation."""

    row: ImportRow
    match: MatchResult
    error: Exception | None = None


@dataclass
class ImportOutcome:
    """Result of applying a single row."""

    row_number: int
    status: OutcomeStatus
    record_id: Any = None
    error: str | None = None


@dataclass(frozen=True)
class RowError:
    """A failed row and the message shown for it."""

    row_number: int
    message: str

    def __str__(self) -> str:
        return f"Row {self.row_number}: {self.message}"


@dataclass
class BatchSummary:
    """Aggregate result of one import batch."""

    outcomes: list[ImportOutcome] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def created(self) -> int:
        return self._count(OutcomeStatus.CREATED)

    @property
    def updated(self) -> int:
        return self._count(OutcomeStatus.UPDATED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def counts(self) -> dict[str, int]:
        return {"created": self.created, "updated": self.updated, "failed": self.failed}

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def record(self, outcome: ImportOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == OutcomeStatus.FAILED:
            self.errors.append(
                RowError(outcome.row_number, outcome.error or "Unknown error")
            )

    def error_preview(self, limit: int = 3) -> list[str]:
        """First `limit` error messages, with "..." appended when more exist."""
        preview = [str(error) for error in self.errors[:limit]]
        if len(self.errors) > limit:
            preview.append("...")
        return preview
