"""Effect planning and application for ledger operations.

Every operation is split in two steps:

1. ``plan_*``: pure functions that check preconditions against the
   store and return a ``LedgerEffect`` (the new record, the counter
   delta, and the ordered payment obligations). Nothing is mutated; a
   failed precondition raises before any effect exists.
2. ``apply_effect``: collects the attached payment, commits the record
   and counter delta, then executes payouts in order (fee to the
   administrator first, remainder to the seller).

Payouts only ever run after the record is committed, so a recipient
that calls back into the ledger sees the post-operation state.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from marketledger.errors import (
    AlreadySold,
    InvalidPayment,
    InvalidPrice,
    Unauthorized,
)
from marketledger.market.item_state_machine import ItemStateMachine
from marketledger.market.store import LedgerStore
from marketledger.models.market import (
    FeeSweep,
    ItemStatus,
    LedgerEffect,
    MarketRecord,
    PaymentSource,
    Transfer,
    TransferReason,
)
from marketledger.settlement.balances import BalanceBook


def plan_list(
    store: LedgerStore,
    token_uri: str,
    price: int,
    payment: int,
    caller: str,
    fee_sweep: FeeSweep = FeeSweep.DEFERRED,
    now: Optional[datetime] = None,
) -> LedgerEffect:
    """Plan a new listing. The record id is the store's next id."""
    _require_caller(store, caller)
    _require_price(price)
    _require_payment(payment, store.listing_fee, "listing fee")
    if not isinstance(token_uri, str):
        raise TypeError(f"token_uri must be a str, got {type(token_uri).__name__}")
    now = now or datetime.now(timezone.utc)

    record = MarketRecord(
        item_id=store.next_id,
        token_uri=token_uri,
        seller=caller,
        custodian=store.escrow,
        price=price,
        status=ItemStatus.LISTED,
        fee_held=0 if fee_sweep == FeeSweep.IMMEDIATE else payment,
        created_utc=now,
        updated_utc=now,
    )
    return LedgerEffect(
        action="list",
        record=record,
        allocates_id=True,
        payment=_collect(store, caller, payment, TransferReason.LISTING_FEE),
        payouts=_fee_forward(store, payment, fee_sweep),
    )


def plan_purchase(
    store: LedgerStore,
    item_id: int,
    payment: int,
    caller: str,
    fee_sweep: FeeSweep = FeeSweep.DEFERRED,
    now: Optional[datetime] = None,
) -> LedgerEffect:
    """Plan a purchase of an active listing at exactly its price."""
    _require_caller(store, caller)
    current = store.get(item_id)
    record = current.copy()
    errors = ItemStateMachine.apply_transition(record, ItemStatus.SOLD)
    if errors:
        raise AlreadySold(f"Item {item_id} is not an active listing ({current.status.value})")
    _require_payment(payment, current.price, "asking price")

    record.custodian = caller
    record.seller = None
    record.fee_held = 0
    record.updated_utc = now or datetime.now(timezone.utc)

    payouts = list(_fee_sweep(store, current, fee_sweep))
    payouts.append(Transfer(
        source=store.escrow,
        recipient=current.seller or "",
        amount=payment,
        reason=TransferReason.SALE_PROCEEDS,
    ))
    return LedgerEffect(
        action="purchase",
        record=record,
        removed_delta=1,
        payment=_collect(store, caller, payment, TransferReason.PURCHASE_PAYMENT),
        payouts=tuple(payouts),
    )


def plan_resell(
    store: LedgerStore,
    item_id: int,
    new_price: int,
    payment: int,
    caller: str,
    fee_sweep: FeeSweep = FeeSweep.DEFERRED,
    now: Optional[datetime] = None,
) -> LedgerEffect:
    """Plan relisting an item the caller holds outright."""
    _require_caller(store, caller)
    current = store.get(item_id)
    if current.custodian != caller:
        raise Unauthorized(f"Only the item owner can resell item {item_id}")
    record = current.copy()
    errors = ItemStateMachine.apply_transition(record, ItemStatus.LISTED)
    if errors:
        raise Unauthorized(errors[0])
    _require_price(new_price)
    _require_payment(payment, store.listing_fee, "listing fee")

    record.price = new_price
    record.seller = caller
    record.custodian = store.escrow
    record.fee_held = 0 if fee_sweep == FeeSweep.IMMEDIATE else payment
    record.updated_utc = now or datetime.now(timezone.utc)
    return LedgerEffect(
        action="resell",
        record=record,
        removed_delta=-1,
        payment=_collect(store, caller, payment, TransferReason.LISTING_FEE),
        payouts=_fee_forward(store, payment, fee_sweep),
    )


def plan_cancel(
    store: LedgerStore,
    item_id: int,
    caller: str,
    fee_sweep: FeeSweep = FeeSweep.DEFERRED,
    now: Optional[datetime] = None,
) -> LedgerEffect:
    """Plan withdrawing an active listing back to its seller.

    The status check runs before the seller check: a sold record has no
    seller, so it must report AlreadySold rather than Unauthorized.
    """
    _require_caller(store, caller)
    current = store.get(item_id)
    record = current.copy()
    errors = ItemStateMachine.apply_transition(record, ItemStatus.WITHDRAWN)
    if errors:
        raise AlreadySold(f"Item {item_id} is not an active listing ({current.status.value})")
    if current.seller != caller:
        raise Unauthorized(f"Only the seller can cancel item {item_id}")

    record.custodian = caller
    record.seller = None
    record.fee_held = 0
    record.updated_utc = now or datetime.now(timezone.utc)
    return LedgerEffect(
        action="cancel",
        record=record,
        removed_delta=1,
        payouts=_fee_sweep(store, current, fee_sweep),
    )


def apply_effect(
    store: LedgerStore,
    balances: BalanceBook,
    effect: LedgerEffect,
    payment_source: PaymentSource = PaymentSource.ATTACHED,
) -> list[Transfer]:
    """Collect payment, commit the record, then pay out.

    An ATTACHED payment is credited into escrow as it arrives; a WALLET
    payment is debited from the caller first. Not atomic on its own: the
    engine checkpoints the record and the named accounts around this
    call and rolls both back if anything raises.
    Returns the transfers actually executed, in order.
    """
    executed: list[Transfer] = []
    if effect.payment is not None:
        if payment_source == PaymentSource.WALLET:
            balances.transfer(effect.payment)
        else:
            balances.credit(effect.payment)
        executed.append(effect.payment)

    if effect.allocates_id:
        item_id = store.allocate_id()
        if item_id != effect.record.item_id:
            raise RuntimeError(
                f"Planned item ID {effect.record.item_id} but allocated {item_id}"
            )
    store.put(effect.record.copy())
    if effect.removed_delta > 0:
        store.increment_removed()
    elif effect.removed_delta < 0:
        store.decrement_removed()

    for payout in effect.payouts:
        balances.transfer(payout)
        executed.append(payout)
    return executed


# ------------------------------------------------------------------
# Precondition helpers
# ------------------------------------------------------------------

def _require_caller(store: LedgerStore, caller: str) -> None:
    if not caller:
        raise Unauthorized("Caller account is required")
    if caller == store.escrow:
        raise Unauthorized("The escrow account cannot act as a caller")


def _require_price(price: int) -> None:
    if isinstance(price, bool) or not isinstance(price, int) or price <= 0:
        raise InvalidPrice(f"Price must be greater than zero, got {price!r}")


def _require_payment(payment: int, required: int, label: str) -> None:
    if isinstance(payment, bool) or not isinstance(payment, int) or payment != required:
        raise InvalidPayment(
            f"Payment must equal the {label} ({required}), got {payment!r}"
        )


def _collect(
    store: LedgerStore,
    caller: str,
    payment: int,
    reason: TransferReason,
) -> Optional[Transfer]:
    if not payment:
        return None
    return Transfer(source=caller, recipient=store.escrow, amount=payment, reason=reason)


def _fee_sweep(
    store: LedgerStore,
    current: MarketRecord,
    fee_sweep: FeeSweep,
) -> tuple[Transfer, ...]:
    # DEFERRED forwards the fee in force now; HELD what this listing paid
    amount = store.listing_fee if fee_sweep == FeeSweep.DEFERRED else current.fee_held
    if not amount:
        return ()
    return (Transfer(
        source=store.escrow,
        recipient=store.admin,
        amount=amount,
        reason=TransferReason.FEE_SWEEP,
    ),)


def _fee_forward(
    store: LedgerStore,
    payment: int,
    fee_sweep: FeeSweep,
) -> tuple[Transfer, ...]:
    if fee_sweep != FeeSweep.IMMEDIATE or not payment:
        return ()
    return (Transfer(
        source=store.escrow,
        recipient=store.admin,
        amount=payment,
        reason=TransferReason.LISTING_FEE,
    ),)
