"""
Core Module
===========
Infrastructure shared by the compliance layer:
- KVStore: namespaced JSON key-value persistence (SQLite / in-memory)
- Receipts: opaque transaction-like receipt ids
"""

from .storage import KVStore, MemoryKVStore, SQLiteKVStore, Namespace, StorageError
from .receipts import fake_tx_hash, is_receipt_id

__all__ = [
    "KVStore",
    "MemoryKVStore",
    "SQLiteKVStore",
    "Namespace",
    "StorageError",
    "fake_tx_hash",
    "is_receipt_id",
]
