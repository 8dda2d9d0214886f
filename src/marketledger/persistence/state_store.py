"""State store: durable snapshot of the ledger and its balances.

One JSON document holds the whole persisted state layout: the record
table keyed by item id, the two counters, the listing fee, the
administrator and escrow accounts, and account balances. Writes go to
a temp file that is renamed over the target, so a crash mid-write
leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from marketledger.market.store import LedgerStore
from marketledger.settlement.balances import BalanceBook

STATE_VERSION = 1


class StateStore:
    """JSON-file persistence for a single ledger instance."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(self, store: LedgerStore, balances: BalanceBook) -> None:
        """Write the full ledger state. Raises OSError on I/O failure."""
        document = {
            "version": STATE_VERSION,
            "ledger": store.to_dict(),
            "balances": balances.to_dict(),
        }
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp_path, self._storage_path)

    def load(self) -> Optional[tuple[LedgerStore, BalanceBook]]:
        """Load ledger state, or None if nothing has been saved yet."""
        if not self._storage_path.exists():
            return None
        with self._storage_path.open("r", encoding="utf-8") as f:
            document: dict[str, Any] = json.load(f)
        version = document.get("version")
        if version != STATE_VERSION:
            raise ValueError(
                f"Unsupported state version {version!r} in {self._storage_path}"
            )
        store = LedgerStore.from_dict(document["ledger"])
        balances = BalanceBook({k: int(v) for k, v in document.get("balances", {}).items()})
        return store, balances
