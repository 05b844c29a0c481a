"""
KV Storage - Namespaced key-value substrate
===========================================

[PERSISTENCE] Local stand-in for contract storage:
- SQLite (aiosqlite) for durability between runs
- In-memory variant for tests and throwaway sessions
- JSON documents as values, detached copies on every read

[ATOMICITY] Each key has its own asyncio.Lock. `update()` holds it across
read -> mutate -> write, so two writers touching the same key never
interleave. There are no cross-key or cross-namespace transactions.

[NAMESPACES] Components never share keys. Each one binds a `Namespace`
view (profiles, poolRules, balances, hookAudit, preferences) over the same
store instance.
"""

import asyncio
import json
import time
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiosqlite

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Persistence layer unreachable or a stored record is corrupt."""


class KVStore(ABC):
    """
    Abstract namespaced key-value store.

    Subclasses implement the raw `_read` / `_write` / `_remove` primitives;
    locking and JSON handling live here.
    """

    def __init__(self):
        # (namespace, key) -> [lock, holders + waiters]
        self._key_locks: Dict[Tuple[str, str], list] = {}

    @asynccontextmanager
    async def _key_lock(self, namespace: str, key: str):
        """Hold the lock of one key. The lock is dropped once nobody uses it."""
        slot = (namespace, key)
        entry = self._key_locks.get(slot)
        if entry is None:
            entry = self._key_locks[slot] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._key_locks[slot]

    # --- Primitives ---

    @abstractmethod
    async def _read(self, namespace: str, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def _write(self, namespace: str, key: str, raw: str) -> None:
        ...

    @abstractmethod
    async def _remove(self, namespace: str, key: str) -> bool:
        ...

    @abstractmethod
    async def keys(self, namespace: str) -> List[str]:
        """All keys currently stored in a namespace."""

    @abstractmethod
    async def clear(self, namespace: Optional[str] = None) -> None:
        """Drop one namespace, or everything when namespace is None."""

    async def close(self) -> None:
        """Release resources (no-op by default)."""

    # --- JSON layer ---

    @staticmethod
    def _encode(value: Any) -> str:
        try:
            return json.dumps(value, sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not JSON serializable: {e}") from e

    @staticmethod
    def _decode(namespace: str, key: str, raw: Optional[str]) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StorageError(f"Corrupt record {namespace}/{key}: {e}") from e

    async def get(self, namespace: str, key: str) -> Any:
        """Read a value. Returns None if the key is absent."""
        return self._decode(namespace, key, await self._read(namespace, key))

    async def set(self, namespace: str, key: str, value: Any) -> None:
        """Overwrite a value unconditionally."""
        raw = self._encode(value)
        async with self._key_lock(namespace, key):
            await self._write(namespace, key, raw)

    async def delete(self, namespace: str, key: str) -> bool:
        """Remove a key. Returns True if something was removed."""
        async with self._key_lock(namespace, key):
            return await self._remove(namespace, key)

    async def update(
        self,
        namespace: str,
        key: str,
        fn: Callable[[Any], Any],
    ) -> Any:
        """
        Atomic read-modify-write of a single key.

        `fn` receives the current value (None if absent) and returns the new
        one. If `fn` raises, nothing is written and the exception propagates.

        Returns:
            The value that was written
        """
        async with self._key_lock(namespace, key):
            current = self._decode(namespace, key, await self._read(namespace, key))
            new_value = fn(current)
            await self._write(namespace, key, self._encode(new_value))
            return new_value


class MemoryKVStore(KVStore):
    """In-process store. Values are kept serialized so reads never alias."""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, str]] = {}

    async def _read(self, namespace: str, key: str) -> Optional[str]:
        return self._data.get(namespace, {}).get(key)

    async def _write(self, namespace: str, key: str, raw: str) -> None:
        self._data.setdefault(namespace, {})[key] = raw

    async def _remove(self, namespace: str, key: str) -> bool:
        return self._data.get(namespace, {}).pop(key, None) is not None

    async def keys(self, namespace: str) -> List[str]:
        return sorted(self._data.get(namespace, {}).keys())

    async def clear(self, namespace: Optional[str] = None) -> None:
        if namespace is None:
            self._data.clear()
        else:
            self._data.pop(namespace, None)


class SQLiteKVStore(KVStore):
    """
    File-backed store on top of aiosqlite.

    [PERSISTENCE] Table kv_store:
    - namespace: TEXT
    - key: TEXT
    - value: TEXT (JSON)
    - updated_at: REAL
    PRIMARY KEY (namespace, key)
    """

    def __init__(self, db_path: str = "cloakswap.db"):
        """
        Args:
            db_path: Path to the database file (":memory:" is allowed)
        """
        super().__init__()
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the table if needed."""
        if self._db is not None:
            return

        try:
            self._db = await aiosqlite.connect(self.db_path)
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
            """)
            await self._db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}") from e

        logger.info(f"[STORAGE] Initialized: {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Store is not initialized")
        return self._db

    async def _read(self, namespace: str, key: str) -> Optional[str]:
        db = self._conn()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
                    (namespace, key)
                )
                row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise StorageError(f"Read failed for {namespace}/{key}: {e}") from e
        return row[0] if row else None

    async def _write(self, namespace: str, key: str, raw: str) -> None:
        db = self._conn()
        async with self._lock:
            try:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO kv_store (namespace, key, value, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (namespace, key, raw, time.time())
                )
                await db.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Write failed for {namespace}/{key}: {e}") from e
        logger.debug(f"[STORAGE] Stored {namespace}/{key} ({len(raw)} bytes)")

    async def _remove(self, namespace: str, key: str) -> bool:
        db = self._conn()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
                    (namespace, key)
                )
                await db.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Delete failed for {namespace}/{key}: {e}") from e
        return cursor.rowcount > 0

    async def keys(self, namespace: str) -> List[str]:
        db = self._conn()
        async with self._lock:
            try:
                cursor = await db.execute(
                    "SELECT key FROM kv_store WHERE namespace = ? ORDER BY key",
                    (namespace,)
                )
                rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StorageError(f"Key scan failed for {namespace}: {e}") from e
        return [row[0] for row in rows]

    async def clear(self, namespace: Optional[str] = None) -> None:
        db = self._conn()
        async with self._lock:
            try:
                if namespace is None:
                    await db.execute("DELETE FROM kv_store")
                else:
                    await db.execute(
                        "DELETE FROM kv_store WHERE namespace = ?",
                        (namespace,)
                    )
                await db.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Clear failed: {e}") from e
        logger.info(f"[STORAGE] Cleared {namespace or 'all namespaces'}")


class Namespace:
    """A view of one namespace of a KVStore."""

    def __init__(self, store: KVStore, name: str):
        self.store = store
        self.name = name

    async def get(self, key: str) -> Any:
        return await self.store.get(self.name, key)

    async def set(self, key: str, value: Any) -> None:
        await self.store.set(self.name, key, value)

    async def delete(self, key: str) -> bool:
        return await self.store.delete(self.name, key)

    async def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        return await self.store.update(self.name, key, fn)

    async def keys(self) -> List[str]:
        return await self.store.keys(self.name)

    async def clear(self) -> None:
        await self.store.clear(self.name)
