"""Sidecar storage provider.

Stores carts through the state API of a local sidecar (Dapr HTTP API):

    GET    /v1.0/state/{store}/{key}
    POST   /v1.0/state/{store}
    DELETE /v1.0/state/{store}/{key}
    GET    /v1.0/healthz
"""

from typing import Any
from urllib.parse import quote

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cartcore.cart.models import Cart
from cartcore.config import Settings
from cartcore.errors import ERROR_STORAGE_UNAVAILABLE, StorageUnavailableError
from cartcore.logging import get_logger, sanitize_id_for_logging
from .base import StorageProvider
from .keys import CartKeys, effective_cart_ttl

logger = get_logger(__name__)

# Options requested on every cart write: no ETag checks, last write wins
_CART_WRITE_OPTIONS = {"concurrency": "last-write", "consistency": "strong"}
# first-write without an ETag only succeeds when the key does not exist
_CREATE_ONLY_OPTIONS = {"concurrency": "first-write", "consistency": "strong"}


class SidecarStorageProvider(StorageProvider):
    """Cart storage through the sidecar state API."""

    name = "sidecar"

    def __init__(
        self,
        base_url: str,
        store_name: str = "statestore",
        connect_timeout: float = 15.0,
        command_timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.store_name = store_name
        self._timeout = httpx.Timeout(command_timeout, connect=connect_timeout)
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SidecarStorageProvider":
        return cls(
            base_url=settings.sidecar_base_url,
            store_name=settings.state_store_name,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
        )

    async def init(self) -> None:
        await self._get_http_client()
        logger.info(f"Sidecar storage provider ready: {self.base_url}, store={self.store_name}")

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            logger.info("Sidecar storage client closed")

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Lazily create the shared httpx client with bounded timeouts."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    def _state_path(self, key: str | None = None) -> str:
        path = f"/v1.0/state/{quote(self.store_name, safe='')}"
        if key is not None:
            path = f"{path}/{quote(key, safe='')}"
        return path

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_http_client()
        return await client.request(method, path, **kwargs)

    async def _call(self, operation: str, key: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Sidecar {operation} failed for {sanitize_id_for_logging(key)}: {e}")
            raise StorageUnavailableError(
                f"{ERROR_STORAGE_UNAVAILABLE}: {operation} failed",
                backend=self.name,
            ) from e

    def _unexpected(self, operation: str, key: str, response: httpx.Response) -> StorageUnavailableError:
        logger.error(
            f"Sidecar {operation} for {sanitize_id_for_logging(key)} "
            f"returned {response.status_code}: {response.text[:200]}"
        )
        return StorageUnavailableError(
            f"{ERROR_STORAGE_UNAVAILABLE}: {operation} returned {response.status_code}",
            backend=self.name,
            status=response.status_code,
        )

    async def get(self, key: str) -> Cart | None:
        response = await self._call(
            "get", key, "GET", self._state_path(key), params={"consistency": "strong"}
        )
        if response.status_code in (204, 404):
            return None
        if response.status_code != 200:
            raise self._unexpected("get", key, response)

        cart = await self._decode(key, response.content)
        if cart is None:
            logger.debug(f"Cart not found in state store: {sanitize_id_for_logging(key)}")
        return cart

    async def save(self, cart: Cart, ttl: int) -> None:
        key = CartKeys.cart_key(cart.user_id)
        ttl_seconds = effective_cart_ttl(ttl)
        body = [
            {
                "key": key,
                "value": cart.to_dict(),
                "options": _CART_WRITE_OPTIONS,
                "metadata": {"ttlInSeconds": str(ttl_seconds)},
            }
        ]
        response = await self._call("save", key, "POST", self._state_path(), json=body)
        if not response.is_success:
            raise self._unexpected("save", key, response)

        logger.debug(
            f"Cart saved to state store: {sanitize_id_for_logging(key)}, "
            f"items={len(cart.items)}, ttl={ttl_seconds}s"
        )

    async def delete(self, key: str) -> None:
        response = await self._call("delete", key, "DELETE", self._state_path(key))
        if not response.is_success and response.status_code != 404:
            raise self._unexpected("delete", key, response)
        logger.debug(f"Deleted state key: {sanitize_id_for_logging(key)}")

    async def create_if_absent(self, key: str, value: str, ttl: int) -> bool:
        body = [
            {
                "key": key,
                "value": value,
                "options": _CREATE_ONLY_OPTIONS,
                "metadata": {"ttlInSeconds": str(int(ttl))},
            }
        ]
        response = await self._call("create", key, "POST", self._state_path(), json=body)
        if response.is_success:
            return True
        if _is_etag_conflict(response):
            return False
        raise self._unexpected("create", key, response)

    async def health(self) -> bool:
        try:
            client = await self._get_http_client()
            response = await client.get("/v1.0/healthz")
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Sidecar health check failed: {e}")
            return False


def _is_etag_conflict(response: httpx.Response) -> bool:
    """The sidecar reports an existing key on first-write as an ETag conflict."""
    if response.status_code == 409:
        return True
    return response.status_code >= 400 and "etag" in response.text.lower()
