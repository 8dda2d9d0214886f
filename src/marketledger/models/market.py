"""Market models: item records, status, and payment obligations.

An item is created once by listing and is never deleted. Its phase is
encoded jointly by ``status`` and ``custodian``:

    LISTED     custodian is the escrow account, seller is set
    SOLD       custodian is the buyer, seller cleared
    WITHDRAWN  custodian is the former seller, seller cleared

All amounts are integers in the smallest currency unit. No floats.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional


class ItemStatus(str, enum.Enum):
    """Lifecycle state of a market record."""
    LISTED = "listed"
    SOLD = "sold"
    WITHDRAWN = "withdrawn"


class FeeSweep(str, enum.Enum):
    """When, and how much, listing fee is forwarded to the administrator.

    DEFERRED: the fee stays in the ledger's balance until that item's next
        purchase or cancellation, which then forwards the listing fee in
        force at that moment.
    HELD: like DEFERRED, but forwards exactly the fee paid for the item
        (``fee_held``), so fee changes in between do not alter the sweep.
    IMMEDIATE: the fee is forwarded inside the list/resell call itself.
    """
    DEFERRED = "deferred"
    HELD = "held"
    IMMEDIATE = "immediate"


class PaymentSource(str, enum.Enum):
    """Where the currency attached to a call comes from.

    ATTACHED: the payment arrives with the call and is credited straight
        into the escrow account.
    WALLET: the payment is debited from the caller's deposited balance,
        so an unfunded caller fails with InsufficientFunds.
    """
    ATTACHED = "attached"
    WALLET = "wallet"


class TransferReason(str, enum.Enum):
    """Why currency moves."""
    LISTING_FEE = "listing_fee"
    FEE_SWEEP = "fee_sweep"
    SALE_PROCEEDS = "sale_proceeds"
    PURCHASE_PAYMENT = "purchase_payment"


@dataclass
class MarketRecord:
    """The stored state for one item identifier."""
    item_id: int
    token_uri: str
    seller: Optional[str]
    custodian: str
    price: int
    status: ItemStatus = ItemStatus.LISTED
    fee_held: int = 0
    created_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    @property
    def sold(self) -> bool:
        """True when the record is not an active listing (sold or withdrawn)."""
        return self.status != ItemStatus.LISTED

    def copy(self) -> MarketRecord:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "token_uri": self.token_uri,
            "seller": self.seller,
            "custodian": self.custodian,
            "price": self.price,
            "status": self.status.value,
            "sold": self.sold,
            "fee_held": self.fee_held,
            "created_utc": self.created_utc.isoformat() if self.created_utc else None,
            "updated_utc": self.updated_utc.isoformat() if self.updated_utc else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MarketRecord:
        created = data.get("created_utc")
        updated = data.get("updated_utc")
        return MarketRecord(
            item_id=int(data["item_id"]),
            token_uri=data["token_uri"],
            seller=data.get("seller"),
            custodian=data["custodian"],
            price=int(data["price"]),
            status=ItemStatus(data["status"]),
            fee_held=int(data.get("fee_held", 0)),
            created_utc=datetime.fromisoformat(created) if created else None,
            updated_utc=datetime.fromisoformat(updated) if updated else None,
        )


@dataclass(frozen=True)
class Transfer:
    """A single currency movement owed by an operation."""
    source: str
    recipient: str
    amount: int
    reason: TransferReason


@dataclass(frozen=True)
class LedgerEffect:
    """Everything one operation changes, computed before anything is applied.

    ``payment`` is the currency attached to the call, collected into the
    ledger's escrow account first. ``record`` then replaces the stored
    record for its item id and ``removed_delta`` is added to the removed
    counter. ``payouts`` run last, in tuple order, against committed state.
    """
    action: str
    record: MarketRecord
    removed_delta: int = 0
    allocates_id: bool = False
    payment: Optional[Transfer] = None
    payouts: tuple[Transfer, ...] = field(default_factory=tuple)

    @property
    def transfers(self) -> tuple[Transfer, ...]:
        """All currency movements in execution order."""
        if self.payment is None:
            return self.payouts
        return (self.payment,) + self.payouts
