"""Balance book: per-account currency held by the ledger's settlement layer.

Holds one integer balance per account (the ledger's own escrow account
included) and moves currency between them. Transfers are all-or-nothing
at the single-transfer level; multi-transfer atomicity is provided by
the engine through ``checkpoint`` / ``rollback`` on the accounts an
operation names.

Recipients may register listeners that run after each credit, in the
same call. This mirrors a receiving account executing code on payment,
which is exactly the window a reentrant caller would exploit.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from marketledger.errors import InsufficientFunds
from marketledger.models.market import Transfer

TransferListener = Callable[[Transfer], None]


class BalanceBook:
    """In-memory account balances in the smallest currency unit.

    Usage:
        book = BalanceBook()
        book.deposit("0xalice", 1_000)
        book.transfer(Transfer("0xalice", "0xbob", 250, TransferReason.SALE_PROCEEDS))
        book.balance_of("0xbob")   # 250
    """

    def __init__(self, balances: Optional[dict[str, int]] = None) -> None:
        self._balances: dict[str, int] = {}
        self._listeners: dict[str, list[TransferListener]] = {}
        for account, amount in (balances or {}).items():
            self.deposit(account, amount)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def deposit(self, account: str, amount: int) -> int:
        """Credit currency from outside the ledger. Returns the new balance."""
        _check_amount(amount)
        if not account:
            raise ValueError("Account must be non-empty")
        self._balances[account] = self.balance_of(account) + amount
        return self._balances[account]

    def transfer(self, transfer: Transfer) -> None:
        """Move ``transfer.amount`` from source to recipient.

        Raises InsufficientFunds if the source cannot cover it. A zero
        amount is a no-op and does not notify listeners.
        """
        _check_amount(transfer.amount)
        if transfer.amount == 0:
            return
        available = self.balance_of(transfer.source)
        if available < transfer.amount:
            raise InsufficientFunds(
                f"{transfer.source} holds {available}, needs {transfer.amount} "
                f"({transfer.reason.value})"
            )
        self._balances[transfer.source] = available - transfer.amount
        self._balances[transfer.recipient] = (
            self.balance_of(transfer.recipient) + transfer.amount
        )
        for listener in list(self._listeners.get(transfer.recipient, [])):
            listener(transfer)

    def credit(self, transfer: Transfer) -> None:
        """Credit ``transfer.amount`` to the recipient without debiting the source.

        Used for currency attached to a call from outside the ledger: the
        source is named for the audit trail only.
        """
        _check_amount(transfer.amount)
        if transfer.amount == 0:
            return
        self._balances[transfer.recipient] = (
            self.balance_of(transfer.recipient) + transfer.amount
        )

    def add_listener(self, account: str, listener: TransferListener) -> None:
        """Run ``listener`` every time ``account`` is credited by a transfer."""
        self._listeners.setdefault(account, []).append(listener)

    def total(self) -> int:
        return sum(self._balances.values())

    def checkpoint(self, accounts: Iterable[str]) -> dict[str, Optional[int]]:
        """Capture the balances of ``accounts`` (None for never-seen accounts)."""
        return {account: self._balances.get(account) for account in accounts}

    def rollback(self, checkpoint: dict[str, Optional[int]]) -> None:
        for account, balance in checkpoint.items():
            if balance is None:
                self._balances.pop(account, None)
            else:
                self._balances[account] = balance

    def to_dict(self) -> dict[str, int]:
        return {k: v for k, v in sorted(self._balances.items()) if v}


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"Amount must be an int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")
