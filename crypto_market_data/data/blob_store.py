"""Durable key -> bytes storage backing the persisted cache tier."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

import aiosqlite

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Abstract durable blob storage.

    Each key holds an opaque byte string plus, independently, a timestamp
    (epoch seconds) that the cache uses to validate freshness at the
    persisted tier.
    """

    async def start(self) -> None:
        """Open underlying resources. Safe to call more than once."""

    async def close(self) -> None:
        """Release underlying resources."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def set(self, key: str, data: bytes) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the blob and its timestamp. Missing keys are ignored."""

    @abstractmethod
    async def get_timestamp(self, key: str) -> Optional[float]:
        pass

    @abstractmethod
    async def set_timestamp(self, key: str, timestamp: float) -> None:
        pass

    async def get_stats(self) -> Dict[str, int]:
        return {}


class MemoryBlobStore(BlobStore):
    """Process-local blob store, for tests and ``--memory-store`` runs."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._timestamps: Dict[str, float] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    async def set(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def delete(self, key: str) -> None:
        self._blobs.pop(key, None)
        self._timestamps.pop(key, None)

    async def get_timestamp(self, key: str) -> Optional[float]:
        return self._timestamps.get(key)

    async def set_timestamp(self, key: str, timestamp: float) -> None:
        self._timestamps[key] = float(timestamp)

    async def get_stats(self) -> Dict[str, int]:
        return {'blobs': len(self._blobs), 'bytes': sum(len(b) for b in self._blobs.values())}

    def __len__(self) -> int:
        return len(self._blobs)

    def __contains__(self, key: str) -> bool:
        return key in self._blobs


class SQLiteBlobStore(BlobStore):
    """Blob store persisted in a SQLite database file."""

    def __init__(self, db_path: Union[str, Path] = "crypto_market_cache.db"):
        """Initialize SQLite blob store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path).expanduser()
        self._initialized = False

    async def start(self) -> None:
        if self._initialized:
            return

        # Ensure database directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    blob_key TEXT PRIMARY KEY,
                    value BLOB,
                    stored_at REAL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.commit()

        self._initialized = True
        logger.info(f"Blob store initialized at {self.db_path}")

    async def get(self, key: str) -> Optional[bytes]:
        await self.start()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT value FROM blobs WHERE blob_key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return bytes(row[0])

    async def set(self, key: str, data: bytes) -> None:
        await self.start()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT INTO blobs (blob_key, value) VALUES (?, ?)
                ON CONFLICT(blob_key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, bytes(data)))
            await db.commit()

    async def delete(self, key: str) -> None:
        await self.start()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM blobs WHERE blob_key = ?", (key,))
            await db.commit()

    async def get_timestamp(self, key: str) -> Optional[float]:
        await self.start()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT stored_at FROM blobs WHERE blob_key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return float(row[0])

    async def set_timestamp(self, key: str, timestamp: float) -> None:
        await self.start()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                INSERT INTO blobs (blob_key, stored_at) VALUES (?, ?)
                ON CONFLICT(blob_key) DO UPDATE SET
                    stored_at = excluded.stored_at,
                    updated_at = CURRENT_TIMESTAMP
            """, (key, float(timestamp)))
            await db.commit()

    async def get_stats(self) -> Dict[str, int]:
        await self.start()
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT COUNT(*), COALESCE(SUM(LENGTH(value)), 0) FROM blobs"
            ) as cursor:
                count, size = await cursor.fetchone()
        return {'blobs': count, 'bytes': size}
