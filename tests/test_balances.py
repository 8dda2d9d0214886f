"""Tests for the balance book."""

import pytest

from marketledger.errors import InsufficientFunds, TransferFailed
from marketledger.models.market import Transfer, TransferReason
from marketledger.settlement.balances import BalanceBook


def _transfer(source: str, recipient: str, amount: int) -> Transfer:
    return Transfer(source, recipient, amount, TransferReason.SALE_PROCEEDS)


class TestBalanceBook:
    def test_deposit_and_transfer(self) -> None:
        book = BalanceBook()
        assert book.deposit("alice", 100) == 100
        book.transfer(_transfer("alice", "bob", 30))
        assert book.balance_of("alice") == 70
        assert book.balance_of("bob") == 30
        assert book.total() == 100

    def test_insufficient_funds(self) -> None:
        book = BalanceBook({"alice": 10})
        with pytest.raises(InsufficientFunds) as exc:
            book.transfer(_transfer("alice", "bob", 11))
        assert isinstance(exc.value, TransferFailed)
        assert book.balance_of("alice") == 10
        assert book.balance_of("bob") == 0

    def test_invalid_amounts(self) -> None:
        book = BalanceBook()
        with pytest.raises(ValueError):
            book.deposit("alice", -1)
        with pytest.raises(TypeError):
            book.deposit("alice", 1.5)  # type: ignore[arg-type]
        with pytest.raises(ValueError):
            book.deposit("", 1)

    def test_zero_transfer_skips_listeners(self) -> None:
        book = BalanceBook()
        calls: list[Transfer] = []
        book.add_listener("bob", calls.append)
        book.transfer(_transfer("alice", "bob", 0))
        assert calls == []

    def test_listener_runs_after_credit(self) -> None:
        book = BalanceBook({"alice": 50})
        seen: list[int] = []
        book.add_listener("bob", lambda t: seen.append(book.balance_of("bob")))
        book.transfer(_transfer("alice", "bob", 20))
        assert seen == [20]

    def test_checkpoint_rollback(self) -> None:
        book = BalanceBook({"alice": 50, "carol": 7})
        saved = book.checkpoint(["alice", "bob"])
        book.transfer(_transfer("alice", "bob", 50))
        book.rollback(saved)
        assert book.balance_of("alice") == 50
        assert book.balance_of("bob") == 0
        assert "bob" not in book.to_dict()
        assert book.balance_of("carol") == 7

    def test_checkpoint_covers_named_accounts_only(self) -> None:
        book = BalanceBook({"alice": 50, "carol": 7})
        assert book.checkpoint(["alice", "dave"]) == {"alice": 50, "dave": None}

    def test_credit_does_not_debit_source(self) -> None:
        book = BalanceBook()
        calls: list[Transfer] = []
        book.add_listener("market", calls.append)
        book.credit(_transfer("alice", "market", 40))
        book.credit(_transfer("alice", "market", 0))
        assert book.balance_of("market") == 40
        assert book.balance_of("alice") == 0
        assert book.total() == 40
        assert calls == []

    def test_to_dict_drops_empty_accounts(self) -> None:
        book = BalanceBook({"alice": 5})
        book.transfer(_transfer("alice", "bob", 5))
        assert book.to_dict() == {"bob": 5}
