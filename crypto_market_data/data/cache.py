"""Two-tier cache for decoded market data: process memory over a durable blob store."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set

from .blob_store import BlobStore
from .clock import Clock, SystemClock
from .errors import DecodeError
from .models import CacheEntry, Decoder
from .resources import DEFAULT_POLICIES, ResourceClass, ResourceKey, ResourcePolicy

logger = logging.getLogger(__name__)

INDEX_PREFIX = "__index__:"


class CacheEntryStore:
    """Memory-resident table of cache entries mirrored into a blob store.

    Memory is the fast tier. On a memory miss the persisted blob is read,
    decoded with the caller's decoder and promoted back into memory.
    Durable writes are scheduled in the background and are best effort:
    a failed write is logged and never fails the logical ``put``.

    Staleness is computed at read time by callers; entries are only removed
    by an explicit clear or replaced by a newer entry for the same key.
    """

    def __init__(self, clock: Optional[Clock] = None, blob_store: Optional[BlobStore] = None,
                 policies: Optional[Dict[ResourceClass, ResourcePolicy]] = None):
        """Initialize cache entry store.

        Args:
            clock: Time source used to stamp entries
            blob_store: Durable tier; memory only when None
            policies: Per-class policy table deciding which classes persist
        """
        self.clock = clock if clock is not None else SystemClock()
        self.blob_store = blob_store
        self.policies = policies if policies is not None else DEFAULT_POLICIES

        self._entries: Dict[ResourceKey, CacheEntry] = {}
        self._pending_writes: Set[asyncio.Task] = set()
        self._write_locks: Dict[str, asyncio.Lock] = {}

        self._stats = {
            'hits': 0,
            'misses': 0,
            'promotions': 0,
            'writes': 0,
            'write_failures': 0,
            'corrupt_blobs': 0,
        }

    async def get(self, key: ResourceKey, decode: Optional[Decoder] = None) -> Optional[CacheEntry]:
        """Get the entry for a key, fresh or stale.

        Args:
            key: Resource key
            decode: Decoder for the persisted payload; without one only
                memory is consulted

        Returns:
            The cache entry, or None on a miss
        """
        entry = self._entries.get(key)
        if entry is not None:
            self._stats['hits'] += 1
            return entry

        if decode is None or not self._persists(key):
            self._stats['misses'] += 1
            return None

        loaded = await self._load_durable(key, decode)

        # A put may have landed while the blob was being read; it is newer
        current = self._entries.get(key)
        if current is not None:
            self._stats['hits'] += 1
            return current

        if loaded is None:
            self._stats['misses'] += 1
            return None

        self._entries[key] = loaded
        self._stats['promotions'] += 1
        logger.debug(f"Promoted {key} from blob store (stored_at={loaded.stored_at:.0f})")
        return loaded

    def put(self, key: ResourceKey, value: Any, payload: Optional[bytes] = None) -> CacheEntry:
        """Store a freshly decoded value, stamped with the current time.

        Args:
            key: Resource key
            value: Decoded value
            payload: Raw bytes the value was decoded from; required for the
                entry to be mirrored into the blob store

        Returns:
            The new cache entry
        """
        entry = CacheEntry(value=value, stored_at=self.clock.now())
        self._entries[key] = entry

        if payload is not None and self._persists(key):
            task = asyncio.ensure_future(self._write_durable(key, entry, payload))
            self._pending_writes.add(task)
            task.add_done_callback(self._pending_writes.discard)

        return entry

    async def clear(self, key: ResourceKey) -> bool:
        """Remove one entry from both tiers.

        Returns:
            True if an in-memory entry existed
        """
        await self.flush()
        existed = self._entries.pop(key, None) is not None

        if self.blob_store is not None and self._persists(key):
            try:
                await self.blob_store.delete(key.storage_key)
                await self._update_index(key.resource_class, remove=key.storage_key)
            except Exception as e:
                logger.warning(f"Failed to delete persisted entry {key}: {e}")

        self._drop_write_lock(key.storage_key)

        return existed

    async def clear_class(self, resource_class: ResourceClass) -> int:
        """Remove every entry of a resource class from both tiers.

        Returns:
            Number of distinct entries removed
        """
        await self.flush()
        removed = {key.storage_key for key in self._entries if key.resource_class == resource_class}
        for key in [k for k in self._entries if k.resource_class == resource_class]:
            del self._entries[key]

        if self.blob_store is not None and self.policies[resource_class].persist:
            try:
                persisted = await self._read_index(resource_class)
                for storage_key in persisted:
                    await self.blob_store.delete(storage_key)
                await self.blob_store.delete(INDEX_PREFIX + resource_class.value)
                removed.update(persisted)
            except Exception as e:
                logger.warning(f"Failed to clear persisted {resource_class.value} entries: {e}")

        for storage_key in removed:
            self._drop_write_lock(storage_key)

        if removed:
            logger.info(f"Cleared {len(removed)} {resource_class.value} cache entries")
        return len(removed)

    async def clear_all(self) -> int:
        total = 0
        for resource_class in ResourceClass:
            total += await self.clear_class(resource_class)
        return total

    async def flush(self) -> None:
        """Wait for scheduled durable writes to finish."""
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def keys(self, resource_class: Optional[ResourceClass] = None) -> List[ResourceKey]:
        return [key for key in self._entries
                if resource_class is None or key.resource_class == resource_class]

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._stats['hits'] + self._stats['misses']
        hit_rate = (self._stats['hits'] / lookups * 100) if lookups > 0 else 0
        return {
            **self._stats,
            'hit_rate': round(hit_rate, 2),
            'size': len(self._entries),
            'pending_writes': len(self._pending_writes),
        }

    def _persists(self, key: ResourceKey) -> bool:
        return self.blob_store is not None and self.policies[key.resource_class].persist

    async def _load_durable(self, key: ResourceKey, decode: Decoder) -> Optional[CacheEntry]:
        storage_key = key.storage_key
        try:
            payload = await self.blob_store.get(storage_key)
            if payload is None:
                return None
            stored_at = await self.blob_store.get_timestamp(storage_key)
        except Exception as e:
            logger.warning(f"Blob store read failed for {key}: {e}")
            return None

        if stored_at is None:
            logger.debug(f"Persisted entry {key} has no timestamp, ignoring")
            return None

        try:
            value = decode(payload)
        except DecodeError as e:
            self._stats['corrupt_blobs'] += 1
            logger.warning(f"Corrupt persisted entry {key} treated as miss: {e}")
            return None
        except Exception as e:
            self._stats['corrupt_blobs'] += 1
            logger.warning(f"Persisted entry {key} failed to decode, treated as miss: {e!r}")
            return None

        return CacheEntry(value=value, stored_at=stored_at)

    async def _write_durable(self, key: ResourceKey, entry: CacheEntry, payload: bytes) -> None:
        storage_key = key.storage_key
        lock = self._write_locks.setdefault(storage_key, asyncio.Lock())

        async with lock:
            # Superseded by a newer put or removed by a clear
            if self._entries.get(key) is not entry:
                return
            try:
                await self.blob_store.set(storage_key, payload)
                await self.blob_store.set_timestamp(storage_key, entry.stored_at)
                await self._update_index(key.resource_class, add=storage_key)
                self._stats['writes'] += 1
            except Exception as e:
                self._stats['write_failures'] += 1
                logger.warning(f"Durable write failed for {key}: {e}")

    def _drop_write_lock(self, storage_key: str) -> None:
        lock = self._write_locks.get(storage_key)
        if lock is not None and not lock.locked():
            del self._write_locks[storage_key]

    async def _read_index(self, resource_class: ResourceClass) -> List[str]:
        raw = await self.blob_store.get(INDEX_PREFIX + resource_class.value)
        if raw is None:
            return []
        try:
            keys = json.loads(raw)
        except ValueError:
            logger.warning(f"Corrupt blob index for {resource_class.value}, rebuilding")
            return []
        return [str(k) for k in keys] if isinstance(keys, list) else []

    async def _update_index(self, resource_class: ResourceClass, add: Optional[str] = None,
                            remove: Optional[str] = None) -> None:
        index_key = INDEX_PREFIX + resource_class.value
        lock = self._write_locks.setdefault(index_key, asyncio.Lock())
        async with lock:
            keys = await self._read_index(resource_class)
            if add is not None and add not in keys:
                keys.append(add)
            if remove is not None and remove in keys:
                keys.remove(remove)
            await self.blob_store.set(index_key, json.dumps(keys).encode())
