"""Market engine: the four state-changing ledger operations plus fee admin.

Each operation plans its effect against the store, then applies it
under the engine lock. If anything raises after the plan was accepted
(for example a payout recipient rejects the credit) the touched record,
the counters and the balances of the accounts the effect names are
rolled back from a checkpoint taken before the apply, so no partial
change is observable. A checkpoint covers one record, so an operation
costs the same whatever the size of the store.

Operations are serialized by a re-entrant lock. While an effect is
being applied, payout recipients may read the already-committed record
but may not start another state-changing operation: such a call is
rejected with ``ReentrantCall``, since a rollback of the outer
operation would otherwise have to undo it too.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Optional

import structlog

from marketledger.errors import (
    Forbidden,
    InvalidPrice,
    MarketError,
    ReentrantCall,
    TransferFailed,
)
from marketledger.market.effects import (
    apply_effect,
    plan_cancel,
    plan_list,
    plan_purchase,
    plan_resell,
)
from marketledger.market.store import LedgerStore, StoreCheckpoint
from marketledger.models.market import FeeSweep, LedgerEffect, PaymentSource, Transfer
from marketledger.settlement.balances import BalanceBook

logger = structlog.get_logger(__name__)

_LOG_EVENTS = {
    "list": "item_listed",
    "purchase": "item_purchased",
    "resell": "item_resold",
    "cancel": "listing_cancelled",
}


class MarketEngine:
    """Applies list / purchase / resell / cancel against one ledger store.

    Usage:
        store = LedgerStore(admin="0xadmin", escrow="0xmarket", listing_fee=25)
        engine = MarketEngine(store)

        item_id = engine.list_item("ipfs://meta", 100, 25, caller="0xalice")
        engine.purchase(item_id, 100, caller="0xbob")
        engine.resell(item_id, 150, 25, caller="0xbob")

    Payments are attached to each call by default. Pass
    ``payment_source=PaymentSource.WALLET`` to debit them from balances
    deposited into the ``BalanceBook`` instead.
    """

    def __init__(
        self,
        store: LedgerStore,
        balances: Optional[BalanceBook] = None,
        fee_sweep: FeeSweep = FeeSweep.DEFERRED,
        lock: Optional[threading.RLock] = None,
        payment_source: PaymentSource = PaymentSource.ATTACHED,
    ) -> None:
        self._store = store
        self._balances = balances if balances is not None else BalanceBook()
        self._fee_sweep = FeeSweep(fee_sweep)
        self._payment_source = PaymentSource(payment_source)
        self._lock = lock or threading.RLock()
        self._applying = False
        self._last_transfers: list[Transfer] = []
        self._last_checkpoint: Optional[
            tuple[StoreCheckpoint, dict[str, Optional[int]]]
        ] = None

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def balances(self) -> BalanceBook:
        return self._balances

    @property
    def fee_sweep(self) -> FeeSweep:
        return self._fee_sweep

    @property
    def payment_source(self) -> PaymentSource:
        return self._payment_source

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def last_transfers(self) -> list[Transfer]:
        """Transfers executed by the most recent successful operation."""
        return list(self._last_transfers)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_item(
        self,
        token_uri: str,
        price: int,
        payment: int,
        caller: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Create a new active listing. Returns the assigned item id."""
        with self._lock:
            effect = self._plan(
                "list", caller,
                lambda: plan_list(
                    self._store, token_uri, price, payment, caller,
                    fee_sweep=self._fee_sweep, now=now,
                ),
            )
            self._apply(effect, caller)
            return effect.record.item_id

    def purchase(
        self,
        item_id: int,
        payment: int,
        caller: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Buy an active listing for exactly its price."""
        with self._lock:
            effect = self._plan(
                "purchase", caller,
                lambda: plan_purchase(
                    self._store, item_id, payment, caller,
                    fee_sweep=self._fee_sweep, now=now,
                ),
                item_id=item_id,
            )
            self._apply(effect, caller)

    def resell(
        self,
        item_id: int,
        new_price: int,
        payment: int,
        caller: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Relist an item the caller owns outright at ``new_price``."""
        with self._lock:
            effect = self._plan(
                "resell", caller,
                lambda: plan_resell(
                    self._store, item_id, new_price, payment, caller,
                    fee_sweep=self._fee_sweep, now=now,
                ),
                item_id=item_id,
            )
            self._apply(effect, caller)

    def cancel(
        self,
        item_id: int,
        caller: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Withdraw the caller's active listing and return the item to them."""
        with self._lock:
            effect = self._plan(
                "cancel", caller,
                lambda: plan_cancel(
                    self._store, item_id, caller,
                    fee_sweep=self._fee_sweep, now=now,
                ),
                item_id=item_id,
            )
            self._apply(effect, caller)

    def get_listing_fee(self) -> int:
        return self._store.listing_fee

    def set_listing_fee(self, new_fee: int, caller: str) -> int:
        """Change the listing fee. Administrator only.

        Returns the previous fee. Under ``FeeSweep.DEFERRED`` the new fee
        is what the next purchase or cancellation forwards; under
        ``FeeSweep.HELD`` each record still forwards what was paid for it.
        """
        with self._lock:
            self._reject_reentry("set_listing_fee", caller)
            if caller != self._store.admin:
                logger.warning(
                    "operation_rejected", action="set_listing_fee",
                    caller=caller, error="forbidden",
                )
                raise Forbidden("Only the administrator can change the listing fee")
            if isinstance(new_fee, bool) or not isinstance(new_fee, int) or new_fee < 0:
                raise InvalidPrice(f"Listing fee must be a non-negative int, got {new_fee!r}")
            previous = self._store.listing_fee
            self._store.listing_fee = new_fee
            self._last_checkpoint = None
            logger.info("listing_fee_changed", previous=previous, listing_fee=new_fee)
            return previous

    def revert_last(self) -> None:
        """Undo the most recent successful operation.

        Used by the service layer when the audit trail refuses the event
        for an operation that has already been applied.
        """
        with self._lock:
            if self._last_checkpoint is None:
                raise RuntimeError("No operation to revert")
            store_checkpoint, balance_checkpoint = self._last_checkpoint
            self._store.rollback(store_checkpoint)
            self._balances.rollback(balance_checkpoint)
            self._last_checkpoint = None
            self._last_transfers = []

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reject_reentry(self, action: str, caller: str) -> None:
        if self._applying:
            logger.warning(
                "operation_rejected", action=action, caller=caller,
                error=ReentrantCall.code,
            )
            raise ReentrantCall(f"Cannot {action} while another operation is paying out")

    def _plan(self, action, caller, planner, item_id=None) -> LedgerEffect:
        self._reject_reentry(action, caller)
        try:
            return planner()
        except MarketError as e:
            logger.info(
                "operation_rejected", action=action, caller=caller,
                item_id=item_id, error=e.code, reason=str(e),
            )
            raise

    def _apply(self, effect: LedgerEffect, caller: str) -> None:
        accounts = {t.source for t in effect.transfers} | {t.recipient for t in effect.transfers}
        store_checkpoint = self._store.checkpoint(effect.record.item_id)
        balance_checkpoint = self._balances.checkpoint(accounts)
        self._applying = True
        try:
            executed = apply_effect(
                self._store, self._balances, effect, self._payment_source,
            )
        except MarketError as e:
            self._rollback(store_checkpoint, balance_checkpoint, effect, e)
            raise
        except Exception as e:
            self._rollback(store_checkpoint, balance_checkpoint, effect, e)
            raise TransferFailed(f"{effect.action} aborted: {e}") from e
        finally:
            self._applying = False

        self._last_transfers = executed
        self._last_checkpoint = (store_checkpoint, balance_checkpoint)
        logger.info(
            _LOG_EVENTS[effect.action],
            item_id=effect.record.item_id,
            caller=caller,
            status=effect.record.status.value,
            price=effect.record.price,
            transfers=len(executed),
        )

    def _rollback(self, store_checkpoint, balance_checkpoint, effect, error) -> None:
        self._store.rollback(store_checkpoint)
        self._balances.rollback(balance_checkpoint)
        logger.warning(
            "operation_rolled_back",
            action=effect.action,
            item_id=effect.record.item_id,
            error=getattr(error, "code", type(error).__name__),
            reason=str(error),
        )
