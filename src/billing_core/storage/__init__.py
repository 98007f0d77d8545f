from billing_core.storage.base import LedgerStore, WriteBatch
from billing_core.storage.memory import InMemoryLedgerStore
from billing_core.storage.sqlite import SQLiteLedgerStore

__all__ = [
    "InMemoryLedgerStore",
    "LedgerStore",
    "SQLiteLedgerStore",
    "WriteBatch",
]
