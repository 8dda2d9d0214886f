"""Settlement: currency balances moved by ledger operations."""

from marketledger.settlement.balances import BalanceBook

__all__ = ["BalanceBook"]
