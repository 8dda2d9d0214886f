"""Persistence: append-only audit log and ledger state snapshots."""

from marketledger.persistence.event_log import EventKind, EventLog, EventRecord
from marketledger.persistence.state_store import StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "StateStore"]
