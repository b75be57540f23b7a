import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import aiosqlite

from ..config import CACHE_KEY, CACHE_TTL_MS
from ..core.models import CacheEntry
from ..errors import CacheFailure

logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS kv (
key TEXT PRIMARY KEY,
value TEXT,
ts INTEGER
);
"""


def now_ms() -> int:
    return int(time.time() * 1000)


class CacheStore:
    """Key/value string storage behind ResultCache.
    Implementations raise CacheFailure when the backing storage misbehaves.
    """

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class MemoryCacheStore(CacheStore):
    def __init__(self) -> None:
        self._store: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._store.get(key)

    async def set(self, key: str, value: str) -> None:
        self._store[key] = value

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._store


class SqliteCacheStore(CacheStore):
    """On-disk store in a single sqlite `kv` table."""

    def __init__(self, db_path: str = "scanner_cache.db") -> None:
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._conn_lock = asyncio.Lock()

    async def init(self) -> None:
        """Open the connection and ensure the schema exists."""
        async with self._conn_lock:
            if self._conn:
                return
            try:
                self._conn = await aiosqlite.connect(self.db_path)
                await self._conn.execute(CREATE_TABLE_SQL)
                await self._conn.commit()
            except Exception as e:
                self._conn = None
                raise CacheFailure(f"Could not open cache database {self.db_path}: {e}") from e

    async def close(self) -> None:
        async with self._conn_lock:
            if self._conn:
                await self._conn.close()
                self._conn = None

    async def _connection(self) -> aiosqlite.Connection:
        if not self._conn:
            await self.init()
        return self._conn

    async def get(self, key: str) -> Optional[str]:
        conn = await self._connection()
        try:
            async with conn.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cur:
                row = await cur.fetchone()
        except Exception as e:
            raise CacheFailure(f"Cache read failed: {e}") from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        conn = await self._connection()
        try:
            await conn.execute(
                "REPLACE INTO kv (key, value, ts) VALUES (?, ?, ?)",
                (key, value, now_ms()),
            )
            await conn.commit()
        except Exception as e:
            raise CacheFailure(f"Cache write failed: {e}") from e

    async def delete(self, key: str) -> None:
        conn = await self._connection()
        try:
            await conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            await conn.commit()
        except Exception as e:
            raise CacheFailure(f"Cache delete failed: {e}") from e


class ResultCache:
    """
    Single TTL-bounded slot holding the last complete result payload.

    Expiry is lazy: an entry older than the TTL is deleted when it is read.
    Storage problems are logged and never propagated; a broken store behaves
    like an empty one.
    """

    def __init__(
        self,
        store: CacheStore,
        key: str = CACHE_KEY,
        ttl_ms: int = CACHE_TTL_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.key = key
        self.ttl_ms = ttl_ms
        self._clock = clock

    async def write(self, payload: Dict[str, Any]) -> bool:
        entry = CacheEntry(key=self.key, timestamp=self._clock(), data=payload)
        try:
            await self.store.set(self.key, entry.model_dump_json(exclude={"key"}))
        except (CacheFailure, TypeError, ValueError) as e:
            logger.warning("Failed to cache results: %s", e)
            return False
        logger.info("Results cached")
        return True

    async def _read_entry(self) -> Optional[CacheEntry]:
        try:
            raw = await self.store.get(self.key)
        except CacheFailure as e:
            logger.warning("Failed to load cache: %s", e)
            return None
        if not raw:
            return None
        try:
            return CacheEntry(key=self.key, **json.loads(raw))
        except (TypeError, ValueError) as e:
            logger.warning("Discarding unreadable cache entry: %s", e)
            await self.clear()
            return None

    async def read_fresh(self) -> Optional[Dict[str, Any]]:
        entry = await self._read_entry()
        if entry is None:
            return None
        age = self._clock() - entry.timestamp
        if age >= self.ttl_ms:
            logger.info("Cache expired (%d minutes old), clearing", age // 60000)
            await self.clear()
            return None
        logger.info("Loaded cached results (%d minutes old)", age // 60000)
        return entry.data

    async def age_minutes(self) -> Optional[int]:
        """Whole minutes since the stored entry was written, or None if there is none."""
        entry = await self._read_entry()
        if entry is None:
            return None
        return max(0, (self._clock() - entry.timestamp) // 60000)

    async def clear(self) -> None:
        try:
            await self.store.delete(self.key)
        except CacheFailure as e:
            logger.warning("Failed to clear cache: %s", e)
