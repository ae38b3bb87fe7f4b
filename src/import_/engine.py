"""
Import reconciliation engine.

Orchestrates a spreadsheet import batch:
1. Normalize each raw row through the table's profile
2. Match rows against existing records (RecordMatcher)
3. Start the identifier sequence for NEW rows
4. Update matched records / insert new ones, one row at a time, in input order
5. Welcome newly created subjects (best-effort)

Row-level failures never abort the batch; they are collected in the
BatchSummary. Only a failure to set up identifier assignment is fatal, and it
happens before any row is written.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from src.exceptions import ImportRowError, StoreError
from src.import_.matching.identifier_sequence import (
    IdentifierSequence,
    make_sequence,
)
from src.import_.matching.record_matcher import RecordMatcher
from src.import_.models import (
    BatchSummary,
    ImportOutcome,
    ImportRow,
    MatchResult,
    OutcomeStatus,
    PreviewEntry,
)
from src.import_.profiles import ImportOptions, ImportProfile
from src.settings import settings

if TYPE_CHECKING:
    from src.services.record_store_service import RecordStore
    from src.services.sms_service import Notifier

logger = logging.getLogger(__name__)

# Unique-constraint violation as reported by PostgREST
HTTP_CONFLICT = 409


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_options() -> ImportOptions:
    """Import options from application settings."""
    return ImportOptions(
        strict_phone=settings.strict_phone_validation,
        strict_gender=settings.strict_gender_validation,
        error_preview_limit=settings.import_error_preview_limit,
    )


class ImportEngine:
    """Classifies and applies one batch of rows against one profile's table."""

    def __init__(
        self,
        profile: ImportProfile,
        store: "RecordStore",
        notifier: "Notifier | None" = None,
        sequence: IdentifierSequence | None = None,
        options: ImportOptions | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.profile = profile
        self.store = store
        self.notifier = notifier
        self.sequence = sequence or make_sequence(
            settings.identifier_strategy, store, profile
        )
        self.options = options or default_options()
        self.clock = clock
        self.matcher = RecordMatcher(store, profile)

    async def preview(self, rows: Sequence[Mapping[str, Any]]) -> list[PreviewEntry]:
        """
        Classify rows without writing anything.

        Rows that cannot be normalized or looked up carry their error; they
        fail when the batch is applied.

        Args:
            rows: Raw spreadsheet rows (column label -> cell value)

        Returns:
            One PreviewEntry per row, in input order
        """
        now = self.clock()
        entries: list[PreviewEntry] = []

        for row_number, raw in enumerate(rows, start=1):
            try:
                row = self.profile.normalize(raw, row_number, self.options, now)
            except ImportRowError as e:
                row = ImportRow(row_number=row_number, raw=dict(raw))
                entries.append(PreviewEntry(row, MatchResult.no_match(), error=e))
                continue

            try:
                match = await self.matcher.match(row)
            except StoreError as e:
                entries.append(PreviewEntry(row, MatchResult.no_match(), error=e))
                continue

            entries.append(PreviewEntry(row, match))

        return entries

    async def apply(self, rows: Sequence[Mapping[str, Any]]) -> BatchSummary:
        """
        Classify and apply a batch.

        Raises:
            BatchSetupError: If identifier assignment cannot be set up; no row
                has been written when this is raised
        """
        async with self.sequence.batch_lock():
            await self.sequence.start()
            entries = await self.preview(rows)
            return await self._apply_entries(entries)

    async def apply_preview(self, entries: Sequence[PreviewEntry]) -> BatchSummary:
        """Apply previously classified rows (the confirm step after preview)."""
        async with self.sequence.batch_lock():
            await self.sequence.start()
            return await self._apply_entries(entries)

    async def _apply_entries(self, entries: Sequence[PreviewEntry]) -> BatchSummary:
        summary = BatchSummary()

        for entry in entries:
            outcome = await self._apply_entry(entry)
            summary.record(outcome)

            if outcome.status == OutcomeStatus.CREATED:
                warning = await self._welcome(entry.row)
                if warning:
                    summary.warnings.append(warning)

        logger.info(
            "Import into %s finished: %d created, %d updated, %d failed",
            self.profile.table,
            summary.created,
            summary.updated,
            summary.failed,
        )
        return summary

    async def _apply_entry(self, entry: PreviewEntry) -> ImportOutcome:
        row = entry.row
        if entry.error is not None:
            return ImportOutcome(
                row.row_number, OutcomeStatus.FAILED, error=str(entry.error)
            )

        if entry.match.record is not None:
            record_id = entry.match.record.id
            try:
                await self.store.update(
                    self.profile.table, record_id, row.payload_fields
                )
            except StoreError as e:
                return ImportOutcome(
                    row.row_number,
                    OutcomeStatus.FAILED,
                    error=f"Error updating record {record_id}: {e}",
                )
            except Exception as e:
                logger.exception("Failed to update row %d", row.row_number)
                return ImportOutcome(row.row_number, OutcomeStatus.FAILED, error=str(e))
            return ImportOutcome(row.row_number, OutcomeStatus.UPDATED, record_id)

        # Defaults fill blank columns; values given in the row win
        fields = {
            **row.fields,
            **self.profile.insert_defaults(self.clock()),
            **row.payload_fields,
        }
        new_id = self.sequence.peek()
        if new_id is not None:
            fields[self.profile.id_field] = new_id

        try:
            created = await self.store.insert(self.profile.table, fields)
        except StoreError as e:
            if new_id is not None and e.status_code == HTTP_CONFLICT:
                # Identifier taken by another writer; later rows must not reuse it
                self.sequence.advance()
            return ImportOutcome(
                row.row_number,
                OutcomeStatus.FAILED,
                error=f"Error inserting record: {e}",
            )
        except Exception as e:
            logger.exception("Failed to insert row %d", row.row_number)
            return ImportOutcome(row.row_number, OutcomeStatus.FAILED, error=str(e))

        self.sequence.advance()
        record_id = new_id if new_id is not None else created.id
        return ImportOutcome(row.row_number, OutcomeStatus.CREATED, record_id)

    async def _welcome(self, row: ImportRow) -> str | None:
        """Notify a newly created subject. Returns a warning on failure."""
        if self.notifier is None or not self.profile.should_welcome(row.fields):
            return None

        phone = str(row.fields.get("phone") or "")
        if not phone:
            return f"Row {row.row_number}: no phone number for welcome SMS"

        try:
            await self.notifier.notify(phone, str(row.fields.get("first_name") or ""))
        except Exception as e:
            logger.warning(
                "Welcome notification failed for row %d: %s", row.row_number, e
            )
            return f"Row {row.row_number}: welcome SMS failed: {e}"
        return None
