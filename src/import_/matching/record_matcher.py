"""
Existing-record matching for spreadsheet imports.

Matches each normalized import row to at most one persisted record.

Matching strategy (first rule with at least one candidate wins):
1. Explicit identifier in the row (record ID, or the subject's user_id)
2. Natural keys in profile priority: phone number, then
   first name + last name + date of birth
3. No candidate: the row is NEW

When several records qualify, the most recently created one is selected.
Profiles with a timestamp column prefer the candidate created within one
second of the row's timestamp, falling back to the most recent record.
Matching only reads from the store, so re-running it against an unchanged
store yields the same results.
"""

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from src.import_.models import ImportRow, MatchReason, MatchResult, PersistedRecord
from src.import_.profiles import ImportProfile

if TYPE_CHECKING:
    from src.services.record_store_service import RecordStore

logger = logging.getLogger(__name__)

TIMESTAMP_TOLERANCE_SECONDS = 1.0

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class RecordMatcher:
    """Classifies import rows against existing records of one profile's table."""

    def __init__(self, store: "RecordStore", profile: ImportProfile):
        self.store = store
        self.profile = profile

    async def classify(self, rows: Sequence[ImportRow]) -> list[MatchResult]:
        """Match every row, in input order."""
        return [await self.match(row) for row in rows]

    async def match(self, row: ImportRow) -> MatchResult:
        """
        Find the existing record for a row, if any.

        Args:
            row: Normalized import row

        Returns:
            MatchResult with the selected record and reason, or no match

        Raises:
            StoreError: If the store cannot be queried
        """
        table = self.profile.table

        if self.profile.external_id_field and row.external_id:
            candidates = await self.store.query_by_field(
                table, self.profile.external_id_column, row.external_id
            )
            if candidates:
                return self._select(candidates, row, MatchReason.EXTERNAL_ID)

        for key in self.profile.natural_keys:
            values = [row.fields.get(name) for name in key.fields]
            if any(value in (None, "") for value in values):
                continue

            first, *rest = key.fields
            candidates = await self.store.query_by_field(table, first, row.fields[first])
            candidates = [
                candidate
                for candidate in candidates
                if all(_same(candidate.fields.get(name), row.fields[name]) for name in rest)
            ]
            if candidates:
                return self._select(candidates, row, key.reason)

        return MatchResult.no_match()

    def _select(
        self,
        candidates: list[PersistedRecord],
        row: ImportRow,
        reason: MatchReason,
    ) -> MatchResult:
        """Deterministically pick one record among the winning rule's candidates."""
        if self.profile.timestamp_field:
            if row.timestamp is not None:
                exact = [
                    c
                    for c in candidates
                    if (ts := self._timestamp(c)) is not None
                    and abs((ts - row.timestamp).total_seconds())
                    < TIMESTAMP_TOLERANCE_SECONDS
                ]
                if exact:
                    return MatchResult(
                        record=self._most_recent(exact),
                        reason=MatchReason.EXACT_TIMESTAMP,
                        detail=f"{reason.value} and timestamp",
                    )
                detail = (
                    f"{reason.value}; no record within "
                    f"{TIMESTAMP_TOLERANCE_SECONDS:g}s of {row.timestamp.isoformat()}"
                )
            else:
                detail = f"{reason.value}; row has no timestamp"
            return MatchResult(
                record=self._most_recent(candidates),
                reason=MatchReason.MOST_RECENT,
                detail=detail,
            )

        detail = None
        if len(candidates) > 1:
            detail = f"{len(candidates)} candidates; most recently created selected"
        return MatchResult(
            record=self._most_recent(candidates), reason=reason, detail=detail
        )

    def _timestamp(self, record: PersistedRecord) -> datetime | None:
        if self.profile.timestamp_field in (None, "created_at"):
            return record.created_at
        return PersistedRecord.from_row(
            {"created_at": record.fields.get(self.profile.timestamp_field)}
        ).created_at

    def _most_recent(self, candidates: list[PersistedRecord]) -> PersistedRecord:
        # Ties on created_at break on the highest identifier
        return max(
            candidates,
            key=lambda c: (self._timestamp(c) or _EPOCH, _id_sort_key(c.id)),
        )


def _same(stored: Any, imported: Any) -> bool:
    if stored is None:
        return imported in (None, "")
    return str(stored).strip() == str(imported).strip()


def _id_sort_key(value: Any) -> tuple[int, int, str]:
    try:
        return (1, int(value), "")
    except (TypeError, ValueError):
        return (0, 0, "" if value is None else str(value))
