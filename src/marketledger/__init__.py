"""Market ledger: listings, purchases, resales and cancellations of unique items."""

__version__ = "0.1.0"
