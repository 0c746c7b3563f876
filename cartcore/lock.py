"""
Advisory per-cart lock.

Built on the storage backend's conditional create: a lock is a key that
exists until it is deleted or its TTL runs out. There are no fencing tokens,
so a holder that outlives its TTL can race the next holder; mutations stay
last-write-wins in that case.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from cartcore.errors import ERROR_CART_BUSY, CartBusyError, StorageUnavailableError
from cartcore.logging import get_logger, sanitize_id_for_logging
from cartcore.storage.base import StorageProvider
from cartcore.storage.keys import TTL, CartKeys

logger = get_logger(__name__)


class DistributedLock:
    """Acquire/release advisory locks through a StorageProvider."""

    def __init__(self, storage: StorageProvider, ttl: int = TTL.LOCK) -> None:
        self.storage = storage
        self.ttl = ttl

    async def acquire(self, key: str, ttl: int | None = None) -> bool:
        """
        Create the lock key if it does not exist.

        An existing lock is left untouched, including its TTL.

        Returns:
            True if this call created the lock
        """
        token = uuid.uuid4().hex
        acquired = await self.storage.create_if_absent(key, token, ttl or self.ttl)
        if acquired:
            logger.debug(f"Acquired lock {sanitize_id_for_logging(key)} token={token[:8]}")
        else:
            logger.debug(f"Lock {sanitize_id_for_logging(key)} already held")
        return acquired

    async def release(self, key: str) -> None:
        """
        Delete the lock key. Missing or expired locks are fine.

        A backend failure is logged rather than raised: the TTL frees the
        lock anyway, and raising here would hide the caller's own error.
        """
        try:
            await self.storage.delete(key)
            logger.debug(f"Released lock {sanitize_id_for_logging(key)}")
        except StorageUnavailableError as e:
            logger.error(f"Failed to release lock {sanitize_id_for_logging(key)}, expires in <= {self.ttl}s: {e}")

    @asynccontextmanager
    async def hold(self, *user_ids: str) -> AsyncIterator[None]:
        """
        Hold the cart locks of all given users for the duration of the block.
        Repeated ids are locked once.

        Raises:
            CartBusyError: If any of the locks is held elsewhere
            StorageUnavailableError: If the backend cannot be reached
        """
        held: list[str] = []
        try:
            for user_id in dict.fromkeys(user_ids):
                key = CartKeys.lock_key(user_id)
                if not await self.acquire(key):
                    raise CartBusyError(ERROR_CART_BUSY, user_id=user_id)
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                await self.release(key)
