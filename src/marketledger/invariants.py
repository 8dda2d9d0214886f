"""Ledger invariant checks.

Run after any operation (tests do it after every step) or on demand
from the CLI against a persisted ledger. Returns a list of violations;
an empty list means the ledger is consistent.
"""

from __future__ import annotations

from typing import Optional

from marketledger.market.item_state_machine import ItemStateMachine
from marketledger.market.store import LedgerStore
from marketledger.models.market import FeeSweep
from marketledger.settlement.balances import BalanceBook


def check_ledger(
    store: LedgerStore,
    balances: Optional[BalanceBook] = None,
    fee_sweep: FeeSweep = FeeSweep.DEFERRED,
) -> list[str]:
    """Return every invariant violation found (empty when consistent).

    Escrow solvency is only checked under ``FeeSweep.HELD``, the one
    policy where the fees owed to the administrator are exactly the
    ``fee_held`` amounts on the records.
    """
    errors: list[str] = []
    item_count = store.next_id - 1

    # --- Identifier density ---
    seen = [r.item_id for r in store.records()]
    if seen != list(range(1, store.next_id)):
        missing = sorted(set(range(1, store.next_id)) - set(seen))
        errors.append(f"Item IDs not dense from 1 to {item_count}; missing {missing}")

    # --- Counters ---
    if not 0 <= store.removed_count <= item_count:
        errors.append(
            f"removed_count ({store.removed_count}) outside [0, {item_count}]"
        )
    active = sum(1 for r in store.records() if ItemStateMachine.is_active(r.status))
    if store.active_count != active:
        errors.append(
            f"Active count from counters ({store.active_count}) != "
            f"records with status listed ({active})"
        )

    # --- Per-record phase ---
    for record in store.records():
        label = f"Item {record.item_id}"
        if record.price <= 0:
            errors.append(f"{label}: price must be > 0, got {record.price}")
        in_escrow = record.custodian == store.escrow
        listed = ItemStateMachine.is_active(record.status)
        if in_escrow != listed:
            errors.append(
                f"{label}: custodian {record.custodian} inconsistent with "
                f"status {record.status.value}"
            )
        if listed and not record.seller:
            errors.append(f"{label}: active listing has no seller")
        if not listed and record.seller is not None:
            errors.append(f"{label}: seller must be cleared once {record.status.value}")
        if not listed and record.fee_held:
            errors.append(f"{label}: fee still held after {record.status.value}")

    # --- Escrow solvency ---
    if balances is not None and fee_sweep == FeeSweep.HELD:
        held = sum(r.fee_held for r in store.records())
        escrow_balance = balances.balance_of(store.escrow)
        if escrow_balance < held:
            errors.append(
                f"Escrow balance ({escrow_balance}) below fees held ({held})"
            )

    return errors
