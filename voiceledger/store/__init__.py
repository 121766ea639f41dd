"""
Ledger stores - transactional persistence behind one interface.
"""

from voiceledger.store.base import LedgerSession, LedgerStore
from voiceledger.store.memory import InMemoryLedgerStore
from voiceledger.store.sql import SqlLedgerStore

__all__ = [
    "LedgerSession",
    "LedgerStore",
    "InMemoryLedgerStore",
    "SqlLedgerStore",
]
