"""Core data models for the market ledger."""

from marketledger.models.market import (
    FeeSweep,
    ItemStatus,
    LedgerEffect,
    MarketRecord,
    PaymentSource,
    Transfer,
    TransferReason,
)

__all__ = [
    "FeeSweep",
    "ItemStatus",
    "LedgerEffect",
    "MarketRecord",
    "PaymentSource",
    "Transfer",
    "TransferReason",
]
