"""Persisted set of watched coin ids."""

import json
import logging
from typing import Set

from .blob_store import BlobStore

logger = logging.getLogger(__name__)

WATCHLIST_KEY = "watchlist_symbols"


class WatchlistManager:
    """Stores the user's watchlist as a JSON array in the blob store."""

    def __init__(self, blob_store: BlobStore, storage_key: str = WATCHLIST_KEY):
        self.blob_store = blob_store
        self.storage_key = storage_key

    async def get_watchlist(self) -> Set[str]:
        raw = await self.blob_store.get(self.storage_key)
        if raw is None:
            return set()
        try:
            ids = json.loads(raw)
        except ValueError:
            logger.warning("Stored watchlist is corrupt, starting empty")
            return set()
        if not isinstance(ids, list):
            return set()
        return {str(coin_id) for coin_id in ids}

    async def add(self, coin_id: str) -> bool:
        """Add a coin id.

        Returns:
            True if the id was not already present
        """
        ids = await self.get_watchlist()
        if coin_id in ids:
            return False
        ids.add(coin_id)
        await self._save(ids)
        return True

    async def remove(self, coin_id: str) -> bool:
        """Remove a coin id.

        Returns:
            True if the id was present
        """
        ids = await self.get_watchlist()
        if coin_id not in ids:
            return False
        ids.discard(coin_id)
        await self._save(ids)
        return True

    async def toggle(self, coin_id: str) -> bool:
        """Add the id if absent, remove it otherwise.

        Returns:
            True if the id is in the watchlist afterwards
        """
        if await self.contains(coin_id):
            await self.remove(coin_id)
            return False
        await self.add(coin_id)
        return True

    async def contains(self, coin_id: str) -> bool:
        return coin_id in await self.get_watchlist()

    async def _save(self, ids: Set[str]) -> None:
        await self.blob_store.set(self.storage_key, json.dumps(sorted(ids)).encode())
        logger.debug(f"Saved watchlist with {len(ids)} ids")
