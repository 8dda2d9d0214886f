"""Read-only views over the ledger store.

Each scan walks every identifier from 1 to ``next_id - 1``; no index is
kept. Records are copied under the engine lock, so a scan only ever
observes committed state and callers can never mutate the store through
a returned record.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from marketledger.market.store import LedgerStore
from marketledger.models.market import MarketRecord


class MarketQueries:
    """Partitions records by role: active, owned by caller, listed by caller."""

    def __init__(
        self,
        store: LedgerStore,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self._store = store
        self._lock = lock or threading.RLock()

    def fetch_active_listings(self) -> list[MarketRecord]:
        """Records held in escrow (never-sold and resold-but-unsold items)."""
        escrow = self._store.escrow
        return self._scan(lambda r: r.custodian == escrow)

    def fetch_owned(self, caller: str) -> list[MarketRecord]:
        """Records the caller holds outright."""
        return self._scan(lambda r: r.custodian == caller)

    def fetch_listed_by(self, caller: str) -> list[MarketRecord]:
        """The caller's currently active listings."""
        return self._scan(lambda r: r.seller is not None and r.seller == caller)

    def get_item(self, item_id: int) -> MarketRecord:
        with self._lock:
            return self._store.get(item_id).copy()

    def token_uri(self, item_id: int) -> str:
        with self._lock:
            return self._store.get(item_id).token_uri

    def owner_of(self, item_id: int) -> str:
        """Current custodian: the escrow account while listed."""
        with self._lock:
            return self._store.get(item_id).custodian

    def _scan(self, predicate: Callable[[MarketRecord], bool]) -> list[MarketRecord]:
        with self._lock:
            return [r.copy() for r in self._store.records() if predicate(r)]
