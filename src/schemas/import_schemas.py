"""Schemas for import endpoints."""

import base64
import binascii
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.import_.models import BatchSummary, PreviewEntry

# Maximum size for uploaded spreadsheets (10MB decoded, ~13.3MB base64-encoded)
MAX_IMPORT_SIZE_BYTES = 10 * 1024 * 1024  # 10MB
MAX_BASE64_SIZE = int(MAX_IMPORT_SIZE_BYTES * 4 / 3) + 100  # base64 overhead + padding


class ImportKind(str, Enum):
    """Importable tables."""

    USERS = "users"
    POPULATION = "population"
    HEALTH_HISTORY = "health_history"


class ImportRequest(BaseModel):
    """Request model for importing a spreadsheet."""

    filename: str = Field(description="Original file name (.xlsx or .csv)")
    data: str = Field(description="Base64-encoded file content")

    @field_validator("data")
    @classmethod
    def validate_data_size(cls, v: str) -> str:
        """Validate that the data field doesn't exceed the maximum size."""
        if len(v) > MAX_BASE64_SIZE:
            max_mb = MAX_IMPORT_SIZE_BYTES / (1024 * 1024)
            raise ValueError(
                f"Import data exceeds maximum size of {max_mb:.0f}MB. "
                "Please split the spreadsheet into smaller files."
            )
        return v

    def decoded(self) -> bytes:
        """Decode the base64 payload."""
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Failed to decode file data: {e}") from e


class PreviewRow(BaseModel):
    """One classified row."""

    row_number: int
    action: str = Field(description="create, update or error")
    record_id: Any = Field(default=None, description="Matched record ID for updates")
    reason: str | None = Field(default=None, description="Why the row matched")
    detail: str | None = None
    error: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_entry(cls, entry: PreviewEntry) -> "PreviewRow":
        if entry.error is not None:
            action = "error"
        elif entry.match.is_new:
            action = "create"
        else:
            action = "update"
        return cls(
            row_number=entry.row.row_number,
            action=action,
            record_id=entry.match.record.id if entry.match.record else None,
            reason=entry.match.reason.value if entry.match.reason else None,
            detail=entry.match.detail,
            error=str(entry.error) if entry.error is not None else None,
            fields=entry.row.fields,
        )


class PreviewResponse(BaseModel):
    """Classification of every row, without applying anything."""

    total_rows: int
    to_create: int
    to_update: int
    errors: int
    rows: list[PreviewRow]


class RowOutcomeSchema(BaseModel):
    row_number: int
    status: str
    record_id: Any = None
    error: str | None = None


class ImportCounts(BaseModel):
    created: int = 0
    updated: int = 0
    failed: int = 0


class ImportResponse(BaseModel):
    """Response model for an applied import batch."""

    counts: ImportCounts
    results: list[RowOutcomeSchema]
    errors: list[str] = Field(
        default_factory=list, description="Every failed row, in input order"
    )
    error_preview: list[str] = Field(
        default_factory=list,
        description="First few errors for display, '...' when truncated",
    )
    warnings: list[str] = Field(
        default_factory=list, description="Non-fatal warnings (e.g. SMS failures)"
    )

    @classmethod
    def from_summary(cls, summary: BatchSummary, preview_limit: int) -> "ImportResponse":
        return cls(
            counts=ImportCounts(**summary.counts),
            results=[
                RowOutcomeSchema(
                    row_number=o.row_number,
                    status=o.status.value,
                    record_id=o.record_id,
                    error=o.error,
                )
                for o in summary.outcomes
            ],
            errors=[str(e) for e in summary.errors],
            error_preview=summary.error_preview(preview_limit),
            warnings=summary.warnings,
        )
