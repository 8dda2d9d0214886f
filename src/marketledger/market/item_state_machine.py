"""Item status state machine: enforces valid lifecycle transitions.

Item lifecycle:
    LISTED → SOLD        (purchase)
    LISTED → WITHDRAWN   (cancel by the seller)
    SOLD → LISTED        (resell by the owner)
    WITHDRAWN → LISTED   (resell by the holder after cancellation)

State semantics:
- LISTED: active listing, held in escrow, purchasable at ``price``.
- SOLD: owned outright by the buyer.
- WITHDRAWN: returned to the seller by cancellation.

Fail-closed: invalid transitions return errors. There are no implicit
transitions.
"""

from __future__ import annotations

from marketledger.models.market import ItemStatus, MarketRecord


# Valid transitions: {from_status: {allowed_to_statuses}}
_TRANSITIONS: dict[ItemStatus, set[ItemStatus]] = {
    ItemStatus.LISTED: {ItemStatus.SOLD, ItemStatus.WITHDRAWN},
    ItemStatus.SOLD: {ItemStatus.LISTED},
    ItemStatus.WITHDRAWN: {ItemStatus.LISTED},
}


class ItemStateMachine:
    """Validates and applies item status transitions.

    Pure computation: validates transitions only. Custody, counters and
    currency are handled by the operation engine.
    """

    @staticmethod
    def validate_transition(
        record: MarketRecord,
        target: ItemStatus,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = record.status
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid item transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(
        record: MarketRecord,
        target: ItemStatus,
    ) -> list[str]:
        """Validate and apply a status transition.

        Returns errors if transition is invalid. On success,
        mutates record.status and returns empty list.
        """
        errors = ItemStateMachine.validate_transition(record, target)
        if errors:
            return errors
        record.status = target
        return []

    @staticmethod
    def is_active(status: ItemStatus) -> bool:
        """Check if a status is an active listing."""
        return status == ItemStatus.LISTED
