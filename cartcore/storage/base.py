"""Base Storage Provider.

Defines the interface every cart state backend implements. A provider
stores carts as JSON under a key with a TTL, and exposes the single
conditional-create primitive the advisory lock is built on.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from cartcore.cart.models import Cart
from cartcore.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)


class StorageProvider(ABC):
    """Base class for cart state backends.

    Each backend must implement:
    - get() - Load a cart, None when absent or expired
    - save() - Write cart and TTL in one backend call
    - delete() - Remove a key, no-op when absent
    - create_if_absent() - Conditional create used by the lock
    - health() - Connectivity probe

    Backend failures are raised as StorageUnavailableError, never turned
    into an absent result.
    """

    # Mode identifier used by the provider registry
    name: str = ""

    async def init(self) -> None:
        """Prepare clients. Called once at process startup."""

    async def close(self) -> None:
        """Release clients. Called once at process shutdown."""

    @abstractmethod
    async def get(self, key: str) -> Cart | None:
        pass

    @abstractmethod
    async def save(self, cart: Cart, ttl: int) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def create_if_absent(self, key: str, value: str, ttl: int) -> bool:
        """Write value with TTL only if key does not exist.

        Returns:
            True if the key was created, False if it already existed
        """
        pass

    @abstractmethod
    async def health(self) -> bool:
        pass

    async def _decode(self, key: str, raw: Any) -> Cart | None:
        """Turn a stored payload into a Cart.

        Corrupted records are logged, deleted and reported as absent so a
        single bad write cannot wedge a user's cart.
        """
        if raw is None or raw == "" or raw == b"":
            return None
        try:
            data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            return Cart.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupted cart data at {sanitize_id_for_logging(key)}: {e}")
            await self.delete(key)
            return None
