"""Tests for the import reconciliation engine."""

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.exceptions import BatchSetupError, NotificationError
from src.import_.engine import ImportEngine
from src.import_.matching.identifier_sequence import StoreAssignedSequence
from src.import_.models import OutcomeStatus
from src.import_.profiles import (
    HEALTH_HISTORY_PROFILE,
    HEALTH_HISTORY_TABLE,
    POPULATION_PROFILE,
    USERS_PROFILE,
    USERS_TABLE,
    ImportOptions,
)
from tests.conftest import FIXED_NOW, InMemoryRecordStore, make_user


def user_cells(n: int, **overrides: Any) -> dict[str, Any]:
    cells: dict[str, Any] = {
        "First Name": f"First{n}",
        "Last Name": f"Last{n}",
        "Date of Birth": "17/05/1990",
        "Gender": "female",
        "Role": "Patient",
        "Phone Number": f"91700000{n:02d}",
    }
    cells.update(overrides)
    return cells


def make_engine(
    store: InMemoryRecordStore,
    notifier: Any = None,
    profile: Any = USERS_PROFILE,
    options: ImportOptions | None = None,
) -> ImportEngine:
    return ImportEngine(
        profile,
        store,
        notifier=notifier,
        options=options or ImportOptions(),
        clock=lambda: FIXED_NOW,
    )


def seeded_store(max_id: int) -> InMemoryRecordStore:
    """A store whose users table reports max identifier `max_id`."""
    return InMemoryRecordStore(
        {USERS_TABLE: [make_user(max_id, role="admin", phone="+639999999999")]}
    )


class TestIdentifierAssignment:
    """New rows get max + 1, in input order."""

    @pytest.mark.anyio
    async def test_new_rows_get_sequential_ids(self) -> None:
        """Max identifier 41 gives 42, 43, 44 for three new rows."""
        store = seeded_store(41)
        engine = make_engine(store)

        summary = await engine.apply([user_cells(1), user_cells(2), user_cells(3)])

        assert summary.counts == {"created": 3, "updated": 0, "failed": 0}
        assert [o.record_id for o in summary.outcomes] == [42, 43, 44]
        assert [r["id"] for r in store.rows(USERS_TABLE)] == [41, 42, 43, 44]
        assert store.calls.count(("query_max", USERS_TABLE)) == 1

    @pytest.mark.anyio
    async def test_empty_table_starts_at_one(self) -> None:
        store = InMemoryRecordStore()
        engine = make_engine(store)

        summary = await engine.apply([user_cells(1)])

        assert summary.outcomes[0].record_id == 1

    @pytest.mark.anyio
    async def test_updates_do_not_consume_identifiers(self) -> None:
        """A matched row in the middle does not skip an identifier."""
        store = seeded_store(10)
        store.rows(USERS_TABLE).append(make_user(5, phone="+639170000002"))
        engine = make_engine(store)

        summary = await engine.apply([user_cells(1), user_cells(2), user_cells(3)])

        assert summary.counts == {"created": 2, "updated": 1, "failed": 0}
        assert [o.status for o in summary.outcomes] == [
            OutcomeStatus.CREATED,
            OutcomeStatus.UPDATED,
            OutcomeStatus.CREATED,
        ]
        assert [o.record_id for o in summary.outcomes] == [11, 5, 12]

    @pytest.mark.anyio
    async def test_failed_inserts_do_not_consume_identifiers(self) -> None:
        store = seeded_store(41)
        store.fail_insert = lambda fields: fields["first_name"] == "First2"
        engine = make_engine(store)

        summary = await engine.apply([user_cells(1), user_cells(2), user_cells(3)])

        assert [o.record_id for o in summary.outcomes] == [42, None, 43]

    @pytest.mark.anyio
    async def test_store_assigned_identifiers(self) -> None:
        """With the store strategy no max is read and ids come from the store."""
        store = seeded_store(41)
        engine = ImportEngine(
            USERS_PROFILE,
            store,
            sequence=StoreAssignedSequence(),
            options=ImportOptions(),
            clock=lambda: FIXED_NOW,
        )

        summary = await engine.apply([user_cells(1)])

        assert summary.created == 1
        assert summary.outcomes[0].record_id == 42
        assert ("query_max", USERS_TABLE) not in store.calls


class TestPartialFailure:
    """Row failures are recorded without aborting the batch."""

    @pytest.mark.anyio
    async def test_store_error_on_row_two(self) -> None:
        """Rows 1 and 3 complete when row 2's insert fails."""
        store = seeded_store(41)
        store.fail_insert = lambda fields: fields["first_name"] == "First2"
        engine = make_engine(store)

        summary = await engine.apply([user_cells(1), user_cells(2), user_cells(3)])

        assert summary.counts == {"created": 2, "updated": 0, "failed": 1}
        assert len(summary.errors) == 1
        assert summary.errors[0].row_number == 2
        assert "Error inserting record" in summary.errors[0].message
        assert store.calls.count(("insert", USERS_TABLE)) == 3

    @pytest.mark.anyio
    async def test_normalization_errors_fail_only_their_row(self) -> None:
        store = seeded_store(1)
        engine = make_engine(store)

        summary = await engine.apply(
            [
                user_cells(1, **{"Date of Birth": "31/02/1990"}),
                user_cells(2, **{"First Name": ""}),
                user_cells(3),
            ]
        )

        assert summary.counts == {"created": 1, "updated": 0, "failed": 2}
        assert [str(e) for e in summary.errors] == [
            "Row 1: Invalid date format: 31/02/1990",
            "Row 2: Missing required field: First Name",
        ]

    @pytest.mark.anyio
    async def test_strict_phone_validation(self) -> None:
        store = seeded_store(1)
        engine = make_engine(store, options=ImportOptions(strict_phone=True))

        summary = await engine.apply([user_cells(1, **{"Phone Number": "12345"})])

        assert summary.failed == 1
        assert "Invalid phone number" in summary.errors[0].message

    @pytest.mark.anyio
    async def test_duplicate_identifier_is_rejected_by_store(self) -> None:
        """A colliding id written by another process fails that row only."""
        store = seeded_store(41)
        # Another writer inserted 42 after this batch read the maximum
        store.rows(USERS_TABLE).append(make_user(42, phone="+639111111111"))
        store.query_max = AsyncMock(return_value=41)  # type: ignore[method-assign]
        engine = make_engine(store)

        summary = await engine.apply([user_cells(1), user_cells(2)])

        assert summary.counts == {"created": 1, "updated": 0, "failed": 1}
        assert summary.errors[0].row_number == 1
        assert "duplicate key" in summary.errors[0].message
        assert summary.outcomes[1].record_id == 43

    @pytest.mark.anyio
    async def test_error_preview_is_bounded(self) -> None:
        store = seeded_store(1)
        engine = make_engine(store)

        summary = await engine.apply(
            [user_cells(n, **{"Last Name": ""}) for n in range(1, 6)]
        )

        assert len(summary.errors) == 5
        preview = summary.error_preview(3)
        assert preview[:3] == [
            "Row 1: Missing required field: Last Name",
            "Row 2: Missing required field: Last Name",
            "Row 3: Missing required field: Last Name",
        ]
        assert preview[3] == "..."


class TestBatchSetup:
    """Setup failures abort before any row is processed."""

    @pytest.mark.anyio
    async def test_unreadable_max_identifier_aborts_batch(self) -> None:
        store = seeded_store(41)
        store.fail_query_max = True
        notifier = AsyncMock()
        engine = make_engine(store, notifier=notifier)

        with pytest.raises(BatchSetupError):
            await engine.apply([user_cells(1), user_cells(2)])

        assert ("insert", USERS_TABLE) not in store.calls
        assert ("query_by_field", USERS_TABLE) not in store.calls
        notifier.notify.assert_not_called()

    @pytest.mark.anyio
    async def test_non_numeric_max_identifier_aborts_batch(self) -> None:
        store = InMemoryRecordStore()
        store.query_max = AsyncMock(return_value="abc")  # type: ignore[method-assign]
        engine = make_engine(store)

        with pytest.raises(BatchSetupError):
            await engine.apply([user_cells(1)])


class TestNotification:
    """Welcome SMS is best-effort."""

    @pytest.mark.anyio
    async def test_new_non_admin_users_are_welcomed(self) -> None:
        store = seeded_store(1)
        notifier = AsyncMock()
        engine = make_engine(store, notifier=notifier)

        await engine.apply([user_cells(1), user_cells(2, Role="admin")])

        notifier.notify.assert_awaited_once_with("+639170000001", "First1")

    @pytest.mark.anyio
    async def test_notification_failure_keeps_created_outcome(self) -> None:
        """A failed SMS never turns Created into Failed."""
        store = seeded_store(1)
        notifier = AsyncMock()
        notifier.notify.side_effect = NotificationError("gateway down")
        engine = make_engine(store, notifier=notifier)

        summary = await engine.apply([user_cells(1)])

        assert summary.counts == {"created": 1, "updated": 0, "failed": 0}
        assert summary.errors == []
        assert summary.warnings == ["Row 1: welcome SMS failed: gateway down"]

    @pytest.mark.anyio
    async def test_updates_are_not_welcomed(self) -> None:
        store = seeded_store(10)
        store.rows(USERS_TABLE).append(make_user(5, phone="+639170000001"))
        notifier = AsyncMock()
        engine = make_engine(store, notifier=notifier)

        await engine.apply([user_cells(1)])

        notifier.notify.assert_not_called()


class TestApplyDetails:
    """Field handling when writing rows."""

    @pytest.mark.anyio
    async def test_insert_uses_canonical_fields_and_defaults(self) -> None:
        store = seeded_store(1)
        engine = make_engine(store)

        await engine.apply([user_cells(1)])

        created = store.rows(USERS_TABLE)[-1]
        assert created["date_of_birth"] == "1990-05-17"
        assert created["phone"] == "+639170000001"
        assert created["gender"] == "F"
        assert created["role"] == "patient"
        assert created["status"] == "active"
        assert created["isUserOnline"] == "no"
        assert created["created_at"] == FIXED_NOW.isoformat()

    @pytest.mark.anyio
    async def test_update_keeps_status_and_creation_time(self) -> None:
        store = seeded_store(10)
        store.rows(USERS_TABLE).append(
            make_user(5, phone="+639170000001", status="inactive")
        )
        engine = make_engine(store)

        await engine.apply([user_cells(1, **{"Middle Name": "Reyes"})])

        updated = next(r for r in store.rows(USERS_TABLE) if r["id"] == 5)
        assert updated["middle_name"] == "Reyes"
        assert updated["first_name"] == "First1"
        assert updated["status"] == "inactive"
        assert updated["created_at"] == "2024-01-01T00:00:00+00:00"

    @pytest.mark.anyio
    async def test_update_without_role_column_keeps_stored_role(self) -> None:
        """A matched admin stays an admin when the sheet has no Role column."""
        store = seeded_store(10)
        store.rows(USERS_TABLE).append(
            make_user(7, role="admin", phone="+639171234567", email="ops@rhu.ph")
        )
        cells = user_cells(1, **{"Phone Number": "9171234567"})
        del cells["Role"]

        summary = await make_engine(store).apply([cells])

        assert summary.updated == 1
        updated = next(r for r in store.rows(USERS_TABLE) if r["id"] == 7)
        assert updated["role"] == "admin"
        assert updated["first_name"] == "First1"

    @pytest.mark.anyio
    async def test_update_skips_blank_optional_columns(self) -> None:
        store = seeded_store(10)
        store.rows(USERS_TABLE).append(
            make_user(5, phone="+639170000001", middle_name="Reyes", gender="F")
        )
        cells = user_cells(1, **{"Middle Name": "", "Gender": "", "Role": ""})

        await make_engine(store).apply([cells])

        updated = next(r for r in store.rows(USERS_TABLE) if r["id"] == 5)
        assert updated["middle_name"] == "Reyes"
        assert updated["gender"] == "F"
        assert updated["role"] == "patient"
        assert updated["last_name"] == "Last1"

    @pytest.mark.anyio
    async def test_insert_without_role_defaults_to_patient(self) -> None:
        store = seeded_store(1)
        cells = user_cells(1)
        del cells["Role"]

        await make_engine(store).apply([cells])

        created = store.rows(USERS_TABLE)[-1]
        assert created["id"] == 2
        assert created["role"] == "patient"
        assert created["middle_name"] is None

    @pytest.mark.anyio
    async def test_population_rows_created(self) -> None:
        store = InMemoryRecordStore()
        engine = make_engine(store, profile=POPULATION_PROFILE)

        summary = await engine.apply(
            [
                {
                    "Household No": "HH-12",
                    "First Name": "Pedro",
                    "Last Name": "Penduko",
                    "Date of Birth": "1975-08-01",
                    "Civil Status": "Married",
                }
            ]
        )

        assert summary.created == 1
        assert store.rows("population_records")[0]["household_no"] == "HH-12"

    @pytest.mark.anyio
    async def test_health_history_update_and_create(self) -> None:
        """Existing user histories are updated; store assigns ids for new ones."""
        store = InMemoryRecordStore(
            {
                HEALTH_HISTORY_TABLE: [
                    {
                        "id": 100,
                        "user_id": "7",
                        "created_at": "2025-03-01T10:00:00+00:00",
                        "allergy": "",
                    }
                ]
            }
        )
        engine = make_engine(store, profile=HEALTH_HISTORY_PROFILE)

        summary = await engine.apply(
            [
                {"User ID": "7", "Allergy": "Penicillin"},
                {"user_id": "8", "family_history_other": "Asthma", "Created At": "12:34.5"},
            ]
        )

        assert summary.counts == {"created": 1, "updated": 1, "failed": 0}
        existing, created = store.rows(HEALTH_HISTORY_TABLE)
        assert existing["allergy"] == "Penicillin"
        assert existing["created_at"] == "2025-03-01T10:00:00+00:00"
        assert created["id"] == 101
        assert created["family_history_other"] == "Asthma"
        assert created["created_at"] == datetime(
            2025, 3, 10, 0, 12, 34, 500000, tzinfo=timezone.utc
        ).isoformat()
        assert ("query_max", HEALTH_HISTORY_TABLE) not in store.calls


class TestPreview:
    """Classify without applying."""

    @pytest.mark.anyio
    async def test_preview_writes_nothing(self) -> None:
        store = seeded_store(3)
        store.rows(USERS_TABLE).append(make_user(2, phone="+639170000001"))
        engine = make_engine(store)

        entries = await engine.preview([user_cells(1), user_cells(2)])

        assert [e.match.is_new for e in entries] == [False, True]
        assert entries[0].match.record is not None
        assert entries[0].match.record.id == 2
        assert ("insert", USERS_TABLE) not in store.calls
        assert ("update", USERS_TABLE) not in store.calls

    @pytest.mark.anyio
    async def test_preview_is_deterministic(self) -> None:
        store = seeded_store(3)
        store.rows(USERS_TABLE).append(make_user(2, phone="+639170000001"))
        engine = make_engine(store)
        rows = [user_cells(1), user_cells(2), user_cells(3, **{"Date of Birth": "x"})]

        first = await engine.preview(rows)
        second = await engine.preview(rows)

        assert [e.match for e in first] == [e.match for e in second]
        assert first[2].error is not None

    @pytest.mark.anyio
    async def test_apply_preview_commits_entries(self) -> None:
        store = seeded_store(41)
        engine = make_engine(store)
        entries = await engine.preview([user_cells(1), user_cells(2)])

        summary = await engine.apply_preview(entries)

        assert summary.created == 2
        assert [o.record_id for o in summary.outcomes] == [42, 43]
