"""Ledger error taxonomy.

Every precondition violation surfaces as a distinct exception kind. All
of them are raised before any mutation is applied, so a failed call
never leaves a partial change behind. The ``code`` attribute is the
stable, machine-readable name used by the service layer and the CLI.
"""

from __future__ import annotations


class MarketError(Exception):
    """Base class for all ledger failures."""

    code = "market_error"


class InvalidPrice(MarketError):
    """Price (or fee) is not a positive amount."""

    code = "invalid_price"


class InvalidPayment(MarketError):
    """Attached currency differs from the required amount."""

    code = "invalid_payment"


class NotFound(MarketError):
    """No record exists for the item identifier."""

    code = "not_found"


class AlreadySold(MarketError):
    """The operation needs an active listing but the item is not one."""

    code = "already_sold"


class Unauthorized(MarketError):
    """Caller is neither the seller nor the custodian the operation requires."""

    code = "unauthorized"


class Forbidden(MarketError):
    """Caller is not the administrator."""

    code = "forbidden"


class TransferFailed(MarketError):
    """A currency transfer could not be executed."""

    code = "transfer_failed"


class InsufficientFunds(TransferFailed):
    """The paying account does not hold enough currency."""

    code = "insufficient_funds"


class ReentrantCall(MarketError):
    """A state-changing call arrived while another operation was paying out."""

    code = "reentrant_call"
