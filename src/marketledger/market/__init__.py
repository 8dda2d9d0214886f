"""Market ledger core: store, operation engine, queries.

The store holds records and counters, the engine applies list /
purchase / resell / cancel, and the queries partition records by role
for display.
"""

from marketledger.market.engine import MarketEngine
from marketledger.market.item_state_machine import ItemStateMachine
from marketledger.market.queries import MarketQueries
from marketledger.market.store import LedgerStore

__all__ = ["ItemStateMachine", "LedgerStore", "MarketEngine", "MarketQueries"]
