"""
Identifier assignment for records created during an import batch.

Two strategies:
- MaxPlusOneSequence reads the table's current maximum identifier once at
  batch start and hands out max + 1, max + 2, ... to created rows.
- StoreAssignedSequence leaves identifiers to the store (auto-increment).

Reading the maximum and inserting are separate store calls, so two batches
against the same table could both read the same maximum. Batches in this
process are serialized per table through batch_lock(); batches in other
processes are stopped by the store's primary key, which rejects the duplicate
insert as a row-level StoreError.
"""

import asyncio
import contextlib
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Literal, Protocol

from src.exceptions import BatchSetupError, StoreError

if TYPE_CHECKING:
    from src.import_.profiles import ImportProfile
    from src.services.record_store_service import RecordStore

logger = logging.getLogger(__name__)

IdentifierStrategy = Literal["max_plus_one", "store"]

# One lock per (event loop, table); asyncio locks are bound to their loop
_table_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _table_lock(table: str) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    locks = _table_locks.setdefault(loop, {})
    if table not in locks:
        locks[table] = asyncio.Lock()
    return locks[table]


class IdentifierSequence(Protocol):
    """Supplies identifiers for NEW rows within one batch."""

    def batch_lock(self) -> AbstractAsyncContextManager[Any]: ...

    async def start(self) -> None: ...

    def peek(self) -> int | None: ...

    def advance(self) -> None: ...


class MaxPlusOneSequence:
    """
    Counter seeded from max(existing identifiers) + 1.

    peek() returns the identifier the next insert should use; advance() is
    called only after that insert succeeded, so failed inserts do not leave
    gaps.
    """

    def __init__(self, store: "RecordStore", table: str, field: str = "id"):
        self.store = store
        self.table = table
        self.field = field
        self._next: int | None = None

    @contextlib.asynccontextmanager
    async def batch_lock(self) -> AsyncIterator[None]:
        async with _table_lock(self.table):
            yield

    async def start(self) -> None:
        """
        Read the current maximum identifier.

        Raises:
            BatchSetupError: If the maximum cannot be read or is not numeric
        """
        try:
            current = await self.store.query_max(self.table, self.field)
        except StoreError as e:
            raise BatchSetupError(
                f"Cannot read current maximum {self.field} from {self.table}: {e}"
            ) from e

        if current is None or current == "":
            self._next = 1
        else:
            try:
                self._next = int(current) + 1
            except (TypeError, ValueError) as e:
                raise BatchSetupError(
                    f"Non-numeric maximum {self.field} in {self.table}: {current!r}"
                ) from e

        logger.info("Identifier sequence for %s starts at %d", self.table, self._next)

    def peek(self) -> int | None:
        if self._next is None:
            raise BatchSetupError("Identifier sequence used before start()")
        return self._next

    def advance(self) -> None:
        if self._next is None:
            raise BatchSetupError("Identifier sequence used before start()")
        self._next += 1


class StoreAssignedSequence:
    """Lets the store assign identifiers on insert."""

    def batch_lock(self) -> AbstractAsyncContextManager[Any]:
        return contextlib.nullcontext()

    async def start(self) -> None:
        return None

    def peek(self) -> int | None:
        return None

    def advance(self) -> None:
        return None


def make_sequence(
    strategy: IdentifierStrategy, store: "RecordStore", profile: "ImportProfile"
) -> IdentifierSequence:
    """Build the identifier sequence for a batch against `profile`'s table."""
    if not profile.assigns_identifiers or strategy == "store":
        return StoreAssignedSequence()
    return MaxPlusOneSequence(store, profile.table, profile.id_field)
