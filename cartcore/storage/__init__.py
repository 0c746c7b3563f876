"""Cart state storage: provider interface and backends."""
from .base import StorageProvider
from .direct import ConnectionState, DirectCacheStorageProvider
from .keys import TTL, CartKeys, effective_cart_ttl, validate_user_id
from .sidecar import SidecarStorageProvider

__all__ = [
    "StorageProvider",
    "SidecarStorageProvider",
    "DirectCacheStorageProvider",
    "ConnectionState",
    "CartKeys",
    "TTL",
    "effective_cart_ttl",
    "validate_user_id",
]
