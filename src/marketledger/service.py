"""Market service: unified facade over the ledger.

This is the primary interface for programmatic access. It wires:
- Ledger store, operation engine and queries (one shared lock)
- Settlement balances
- Audit trail (append-only event log)
- Persistence (state snapshot after every mutation)

All operations return a typed ``ServiceResult``. Ledger errors become
``success=False`` with ``error_code`` set to the error kind. Audit events
are never silently dropped: if the event log rejects a write, the
operation is rolled back and reported as failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from marketledger.config import MarketConfig
from marketledger.errors import MarketError
from marketledger.invariants import check_ledger
from marketledger.market.engine import MarketEngine
from marketledger.market.queries import MarketQueries
from marketledger.market.store import LedgerStore
from marketledger.models.market import MarketRecord, Transfer
from marketledger.persistence.event_log import EventKind, EventLog, EventRecord
from marketledger.persistence.state_store import StateStore
from marketledger.settlement.balances import BalanceBook

logger = structlog.get_logger(__name__)

_ACTION_EVENTS = {
    "list": EventKind.ITEM_LISTED,
    "purchase": EventKind.ITEM_PURCHASED,
    "resell": EventKind.ITEM_RESOLD,
    "cancel": EventKind.LISTING_CANCELLED,
}


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None


class MarketService:
    """Ledger facade with audit trail and persistence.

    Usage:
        config = MarketConfig.from_config_dir(config_dir)
        service = MarketService(config)

        result = service.list_item("0xalice", "ipfs://meta", price=500)
        item_id = result.data["item_id"]
        service.purchase("0xbob", item_id)

    With ``payment_source = "wallet"`` in the config, callers pay from
    balances credited through ``deposit`` first.

    Persistence (optional):
        service = MarketService(config, event_log=log, state_store=store)
        # State is loaded on construction and saved after each mutation.
    """

    def __init__(
        self,
        config: MarketConfig,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._config = config
        self._event_log = event_log
        self._state_store = state_store

        loaded = state_store.load() if state_store is not None else None
        if loaded is not None:
            store, balances = loaded
            if store.admin != config.admin or store.escrow != config.escrow:
                raise ValueError(
                    "Persisted ledger accounts do not match configuration: "
                    f"admin={store.admin} escrow={store.escrow}"
                )
        else:
            store = LedgerStore(
                admin=config.admin,
                escrow=config.escrow,
                listing_fee=config.listing_fee,
            )
            balances = BalanceBook()

        self._engine = MarketEngine(
            store, balances,
            fee_sweep=config.fee_sweep,
            payment_source=config.payment_source,
        )
        self._queries = MarketQueries(store, lock=self._engine.lock)

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = event_log.count if event_log is not None else 0
        self._persistence_degraded = False

    @property
    def engine(self) -> MarketEngine:
        return self._engine

    @property
    def queries(self) -> MarketQueries:
        return self._queries

    @property
    def config(self) -> MarketConfig:
        return self._config

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def list_item(
        self,
        caller: str,
        token_uri: str,
        price: int,
        payment: Optional[int] = None,
    ) -> ServiceResult:
        """List a new item. ``payment`` defaults to the current listing fee."""
        if payment is None:
            payment = self._engine.get_listing_fee()
        return self._run(
            "list", caller,
            lambda: self._engine.list_item(token_uri, price, payment, caller),
        )

    def purchase(
        self,
        caller: str,
        item_id: int,
        payment: Optional[int] = None,
    ) -> ServiceResult:
        """Buy an item. ``payment`` defaults to the item's asking price."""
        if payment is None:
            record = self._engine.store.find(item_id)
            payment = record.price if record is not None else 0
        return self._run(
            "purchase", caller,
            lambda: self._engine.purchase(item_id, payment, caller),
            item_id=item_id,
        )

    def resell(
        self,
        caller: str,
        item_id: int,
        price: int,
        payment: Optional[int] = None,
    ) -> ServiceResult:
        if payment is None:
            payment = self._engine.get_listing_fee()
        return self._run(
            "resell", caller,
            lambda: self._engine.resell(item_id, price, payment, caller),
            item_id=item_id,
        )

    def cancel(self, caller: str, item_id: int) -> ServiceResult:
        return self._run(
            "cancel", caller,
            lambda: self._engine.cancel(item_id, caller),
            item_id=item_id,
        )

    def get_listing_fee(self) -> int:
        return self._engine.get_listing_fee()

    def set_listing_fee(self, caller: str, new_fee: int) -> ServiceResult:
        """Change the listing fee (administrator only)."""
        with self._engine.lock:
            try:
                previous = self._engine.set_listing_fee(new_fee, caller)
            except MarketError as e:
                return ServiceResult(success=False, errors=[str(e)], error_code=e.code)

            err = self._record_event(
                EventKind.LISTING_FEE_CHANGED, caller,
                {"previous_fee": previous, "listing_fee": new_fee},
            )
            if err:
                self._engine.store.listing_fee = previous
                return ServiceResult(success=False, errors=[err], error_code="audit_failure")

            return self._committed({"previous_fee": previous, "listing_fee": new_fee})

    def deposit(self, account: str, amount: int) -> ServiceResult:
        """Credit an account from outside the ledger (the caller's wallet)."""
        with self._engine.lock:
            balances = self._engine.balances
            previous = balances.checkpoint([account])
            try:
                balance = balances.deposit(account, amount)
            except (TypeError, ValueError) as e:
                return ServiceResult(success=False, errors=[str(e)], error_code="invalid_amount")

            err = self._record_event(
                EventKind.FUNDS_DEPOSITED, account,
                {"account": account, "amount": amount},
            )
            if err:
                balances.rollback(previous)
                return ServiceResult(success=False, errors=[err], error_code="audit_failure")

            return self._committed({"account": account, "balance": balance})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def fetch_active_listings(self) -> list[MarketRecord]:
        return self._queries.fetch_active_listings()

    def fetch_owned(self, caller: str) -> list[MarketRecord]:
        return self._queries.fetch_owned(caller)

    def fetch_listed_by(self, caller: str) -> list[MarketRecord]:
        return self._queries.fetch_listed_by(caller)

    def get_item(self, item_id: int) -> Optional[MarketRecord]:
        try:
            return self._queries.get_item(item_id)
        except MarketError:
            return None

    def balance_of(self, account: str) -> int:
        with self._engine.lock:
            return self._engine.balances.balance_of(account)

    def check_invariants(self) -> list[str]:
        with self._engine.lock:
            return check_ledger(
                self._engine.store, self._engine.balances, self._engine.fee_sweep,
            )

    def status(self) -> dict[str, Any]:
        """Return ledger-wide status summary."""
        with self._engine.lock:
            store = self._engine.store
            return {
                "admin": store.admin,
                "escrow": store.escrow,
                "listing_fee": store.listing_fee,
                "fee_sweep": self._engine.fee_sweep.value,
                "payment_source": self._engine.payment_source.value,
                "items": {
                    "total": store.item_count,
                    "active": store.active_count,
                    "removed": store.removed_count,
                    "by_status": store.status_counts(),
                },
                "balances": {
                    "escrow": self._engine.balances.balance_of(store.escrow),
                    "admin": self._engine.balances.balance_of(store.admin),
                },
                "events": self._event_log.count if self._event_log is not None else 0,
                "persistence_degraded": self._persistence_degraded,
            }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(
        self,
        action: str,
        caller: str,
        operation: Callable[[], Optional[int]],
        item_id: Optional[int] = None,
    ) -> ServiceResult:
        """Run one engine operation, then audit and persist it.

        Fail-closed: if audit recording fails, the engine reverts the
        operation it just applied.
        """
        with self._engine.lock:
            try:
                returned = operation()
            except MarketError as e:
                return ServiceResult(success=False, errors=[str(e)], error_code=e.code)

            if item_id is None:
                item_id = returned
            record = self._engine.store.get(item_id)
            transfers = self._engine.last_transfers
            payload = _record_payload(record)
            payload["transfers"] = [_transfer_payload(t) for t in transfers]

            err = self._record_event(_ACTION_EVENTS[action], caller, payload)
            if err:
                self._engine.revert_last()
                return ServiceResult(success=False, errors=[err], error_code="audit_failure")

            return self._committed({
                "item_id": item_id,
                "status": record.status.value,
                "price": record.price,
                "transfers": payload["transfers"],
            })

    def _committed(self, data: dict[str, Any]) -> ServiceResult:
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> Optional[str]:
        """Append an audit event. Returns error string or None."""
        if self._event_log is None:
            return None
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            logger.error("audit_write_failed", event_kind=kind.value, error=str(e))
            return f"Event log failure: {e}"
        return None

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after the audit event has been committed.

        MUST NOT roll back in-memory state: the audit trail is already
        durable. On failure the store file is stale; flag it and return
        a warning instead of an error.
        """
        if self._state_store is None:
            return None
        try:
            self._state_store.save(self._engine.store, self._engine.balances)
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning("persistence_degraded", error=str(e))
            return f"Persistence degraded: {e}; state committed in audit trail but StateStore is stale"


def _record_payload(record: MarketRecord) -> dict[str, Any]:
    return {
        "item_id": record.item_id,
        "token_uri": record.token_uri,
        "seller": record.seller,
        "custodian": record.custodian,
        "price": record.price,
        "status": record.status.value,
        "sold": record.sold,
    }


def _transfer_payload(transfer: Transfer) -> dict[str, Any]:
    return {
        "source": transfer.source,
        "recipient": transfer.recipient,
        "amount": transfer.amount,
        "reason": transfer.reason.value,
    }
