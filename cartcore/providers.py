"""
Backend selection.

Storage and messaging backends are chosen once at startup from Settings and
bundled into a CartBackends value that is handed to whoever needs it.
"""

from dataclasses import dataclass
from typing import Any

from cartcore.config import Settings
from cartcore.errors import ConfigError
from cartcore.events.base import EventPublisher
from cartcore.events.log import LogEventPublisher
from cartcore.events.qstash import QStashEventPublisher
from cartcore.events.sidecar import SidecarEventPublisher
from cartcore.lock import DistributedLock
from cartcore.logging import get_logger
from cartcore.storage.base import StorageProvider
from cartcore.storage.direct import DirectCacheStorageProvider
from cartcore.storage.sidecar import SidecarStorageProvider

logger = get_logger(__name__)

# Key: mode name from STORAGE_MODE / MESSAGING_MODE
# Value: backend class exposing from_settings()
_STORAGE_REGISTRY: dict[str, type[StorageProvider]] = {
    SidecarStorageProvider.name: SidecarStorageProvider,
    DirectCacheStorageProvider.name: DirectCacheStorageProvider,
}

_PUBLISHER_REGISTRY: dict[str, type[EventPublisher]] = {
    SidecarEventPublisher.name: SidecarEventPublisher,
    QStashEventPublisher.name: QStashEventPublisher,
    LogEventPublisher.name: LogEventPublisher,
}


def register_storage(provider_class: type[StorageProvider]) -> type[StorageProvider]:
    """Decorator to register an additional storage backend."""
    _STORAGE_REGISTRY[provider_class.name] = provider_class
    return provider_class


def register_publisher(publisher_class: type[EventPublisher]) -> type[EventPublisher]:
    """Decorator to register an additional event publisher backend."""
    _PUBLISHER_REGISTRY[publisher_class.name] = publisher_class
    return publisher_class


def build_storage(mode: str, settings: Settings) -> StorageProvider:
    """
    Instantiate the storage backend registered for ``mode``.

    Raises:
        ConfigError: If no backend is registered under that name
    """
    provider_class = _STORAGE_REGISTRY.get(mode)
    if provider_class is None:
        raise ConfigError(f"Unknown storage mode: {mode}. Available: {list(_STORAGE_REGISTRY)}")
    return provider_class.from_settings(settings)


def build_publisher(mode: str, settings: Settings) -> EventPublisher:
    publisher_class = _PUBLISHER_REGISTRY.get(mode)
    if publisher_class is None:
        raise ConfigError(f"Unknown messaging mode: {mode}. Available: {list(_PUBLISHER_REGISTRY)}")
    return publisher_class.from_settings(settings)


async def resolve_storage(settings: Settings) -> StorageProvider:
    """Pick the storage backend, probing the sidecar in ``auto`` mode."""
    if settings.storage_mode != "auto":
        return build_storage(settings.storage_mode, settings)

    sidecar = build_storage(SidecarStorageProvider.name, settings)
    if await sidecar.health():
        logger.info("Storage mode auto: sidecar reachable, using sidecar state store")
        return sidecar

    await sidecar.close()
    logger.warning("Storage mode auto: sidecar unreachable, falling back to direct cache")
    return build_storage(DirectCacheStorageProvider.name, settings)


def resolve_messaging_mode(settings: Settings, storage: StorageProvider) -> str:
    """Messaging follows storage in ``auto`` mode."""
    if settings.messaging_mode != "auto":
        return settings.messaging_mode
    if storage.name == SidecarStorageProvider.name:
        return SidecarEventPublisher.name
    if settings.qstash_token:
        return QStashEventPublisher.name
    return LogEventPublisher.name


@dataclass
class CartBackends:
    """Everything the cart service needs from the outside world."""
    settings: Settings
    storage: StorageProvider
    publisher: EventPublisher
    lock: DistributedLock

    @classmethod
    async def create(cls, settings: Settings) -> "CartBackends":
        """
        Resolve and instantiate backends. Does not start them; call init().

        Raises:
            ConfigError: If a mode has no registered backend
        """
        storage = await resolve_storage(settings)
        messaging_mode = resolve_messaging_mode(settings, storage)
        publisher = build_publisher(messaging_mode, settings)
        logger.info(f"Cart backends selected: storage={storage.name}, messaging={publisher.name}")
        return cls(
            settings=settings,
            storage=storage,
            publisher=publisher,
            lock=DistributedLock(storage, ttl=settings.lock_ttl),
        )

    async def init(self) -> None:
        await self.storage.init()
        await self.publisher.init()

    async def close(self) -> None:
        """Drain pending publishes first, then close storage."""
        try:
            await self.publisher.close()
        finally:
            await self.storage.close()
        logger.info("Cart backends closed")

    async def health(self) -> dict[str, Any]:
        storage_ok = await self.storage.health()
        messaging_ok = await self.publisher.health()
        return {
            "storage": storage_ok,
            "messaging": messaging_ok,
            "storageBackend": self.storage.name,
            "messagingBackend": self.publisher.name,
        }
