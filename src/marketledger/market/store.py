"""Ledger store: the item table, the two counters, fee and administrator.

The store holds state and exposes the primitive operations the engine
and queries need. It performs type and range checks only; market policy
(who may do what, which amounts are owed) lives in the engine.

Each store is an independent ledger instance. Nothing here is
process-global, so tests can run any number of ledgers side by side.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional

from marketledger.errors import NotFound
from marketledger.models.market import ItemStatus, MarketRecord


@dataclass(frozen=True)
class StoreCheckpoint:
    """Prior state of everything one operation can touch.

    An operation changes at most one record plus the scalars, so a
    checkpoint costs the same however many records the store holds.
    ``record`` is None when the item id had not been stored yet.
    """
    item_id: int
    record: Optional[MarketRecord]
    next_id: int
    removed_count: int
    listing_fee: int


class LedgerStore:
    """Item table plus the ``next_id`` and ``removed_count`` counters.

    Usage:
        store = LedgerStore(admin="0xadmin", escrow="0xmarket", listing_fee=25)
        item_id = store.allocate_id()
        store.put(MarketRecord(item_id, "ipfs://...", "0xalice", "0xmarket", 100))
        record = store.get(item_id)
    """

    def __init__(
        self,
        admin: str,
        escrow: str,
        listing_fee: int = 0,
    ) -> None:
        if not admin:
            raise ValueError("Administrator account must be non-empty")
        if not escrow:
            raise ValueError("Escrow account must be non-empty")
        if admin == escrow:
            raise ValueError("Administrator and escrow accounts must differ")
        _check_amount(listing_fee, "listing_fee")
        self._admin = admin
        self._escrow = escrow
        self._listing_fee = listing_fee
        self._records: dict[int, MarketRecord] = {}
        self._next_id = 1
        self._removed_count = 0

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def escrow(self) -> str:
        return self._escrow

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def removed_count(self) -> int:
        return self._removed_count

    @property
    def item_count(self) -> int:
        """Number of identifiers ever assigned."""
        return self._next_id - 1

    @property
    def active_count(self) -> int:
        """Number of active listings, derived from the counters."""
        return self.item_count - self._removed_count

    @property
    def listing_fee(self) -> int:
        return self._listing_fee

    @listing_fee.setter
    def listing_fee(self, value: int) -> None:
        _check_amount(value, "listing_fee")
        self._listing_fee = value

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get(self, item_id: int) -> MarketRecord:
        """Return the stored record. Raises NotFound for unknown ids."""
        record = self._records.get(item_id)
        if record is None:
            raise NotFound(f"Unknown item ID: {item_id}")
        return record

    def find(self, item_id: int) -> Optional[MarketRecord]:
        return self._records.get(item_id)

    def put(self, record: MarketRecord) -> None:
        """Store a record under its own item id.

        The id must already be allocated; records are never deleted.
        """
        if not isinstance(record, MarketRecord):
            raise TypeError(f"Expected MarketRecord, got {type(record).__name__}")
        if not 1 <= record.item_id < self._next_id:
            raise ValueError(f"Item ID not allocated: {record.item_id}")
        self._records[record.item_id] = record

    def allocate_id(self) -> int:
        """Assign the next identifier. Identifiers are never reused."""
        item_id = self._next_id
        self._next_id += 1
        return item_id

    def increment_removed(self) -> None:
        if self._removed_count >= self.item_count:
            raise ValueError("removed_count cannot exceed the number of items")
        self._removed_count += 1

    def decrement_removed(self) -> None:
        if self._removed_count <= 0:
            raise ValueError("removed_count cannot go below zero")
        self._removed_count -= 1

    def records(self) -> Iterator[MarketRecord]:
        """Yield stored records in identifier order, 1 .. next_id - 1."""
        for item_id in range(1, self._next_id):
            record = self._records.get(item_id)
            if record is not None:
                yield record

    def status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ItemStatus}
        for record in self._records.values():
            counts[record.status.value] += 1
        return counts

    # ------------------------------------------------------------------
    # Rollback and serialization
    # ------------------------------------------------------------------

    def checkpoint(self, item_id: int) -> StoreCheckpoint:
        record = self._records.get(item_id)
        return StoreCheckpoint(
            item_id=item_id,
            record=record.copy() if record is not None else None,
            next_id=self._next_id,
            removed_count=self._removed_count,
            listing_fee=self._listing_fee,
        )

    def rollback(self, checkpoint: StoreCheckpoint) -> None:
        """Put back the record and scalars captured by ``checkpoint``."""
        if checkpoint.record is None:
            self._records.pop(checkpoint.item_id, None)
        else:
            self._records[checkpoint.item_id] = checkpoint.record.copy()
        self._next_id = checkpoint.next_id
        self._removed_count = checkpoint.removed_count
        self._listing_fee = checkpoint.listing_fee

    def to_dict(self) -> dict[str, Any]:
        return {
            "admin": self._admin,
            "escrow": self._escrow,
            "listing_fee": self._listing_fee,
            "next_id": self._next_id,
            "removed_count": self._removed_count,
            "records": [r.to_dict() for r in self.records()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerStore:
        store = cls(
            admin=data["admin"],
            escrow=data["escrow"],
            listing_fee=int(data.get("listing_fee", 0)),
        )
        next_id = int(data.get("next_id", 1))
        removed = int(data.get("removed_count", 0))
        if next_id < 1:
            raise ValueError(f"next_id must be >= 1, got {next_id}")
        if not 0 <= removed <= next_id - 1:
            raise ValueError(
                f"removed_count ({removed}) out of range for next_id ({next_id})"
            )
        store._next_id = next_id
        store._removed_count = removed
        for raw in data.get("records", []):
            store.put(MarketRecord.from_dict(raw))
        return store


def _check_amount(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
