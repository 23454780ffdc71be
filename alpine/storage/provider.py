"""
Per-user store handles

Replaces module-level caches: every user's store is opened explicitly,
looked up through the provider, and closed when the user goes away.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Dict

from alpine.storage.base import TrackerStateStore

logger = logging.getLogger(__name__)


class StoreProvider:
    """
    Owns one TrackerStateStore per user.

    Args:
        factory: Called with a user id to build a new, unopened store
    """

    def __init__(self, factory: Callable[[str], TrackerStateStore]):
        self._factory = factory
        self._stores: Dict[str, TrackerStateStore] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    async def open(self, user_id: str) -> TrackerStateStore:
        """Open (or return the already open) store for a user"""
        async with self._lock:
            store = self._stores.get(user_id)
            if store is None:
                store = self._factory(user_id)
                await store.open()
                self._stores[user_id] = store
                logger.info(f"Opened tracker store for user {user_id}")
            return store

    def get(self, user_id: str) -> TrackerStateStore:
        """Open store for a user; KeyError when it was never opened"""
        return self._stores[user_id]

    async def close(self, user_id: str) -> None:
        async with self._lock:
            store = self._stores.pop(user_id, None)
        if store is not None:
            await store.close()
            logger.info(f"Closed tracker store for user {user_id}")

    async def close_all(self) -> None:
        async with self._lock:
            stores = list(self._stores.items())
            self._stores.clear()
        for user_id, store in stores:
            try:
                await store.close()
            except Exception as e:
                logger.error(f"Failed to close tracker store for user {user_id}: {e}", exc_info=True)
        logger.info(f"Closed {len(stores)} tracker stores")

    @asynccontextmanager
    async def session(self, user_id: str) -> AsyncGenerator[TrackerStateStore, None]:
        """Store for the duration of a block, closed afterwards"""
        store = await self.open(user_id)
        try:
            yield store
        finally:
            await self.close(user_id)
