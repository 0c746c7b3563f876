"""Direct cache storage provider.

Stores carts straight in Upstash Redis, for deployments without a sidecar.

The connection is opened lazily and tracked as an explicit state machine:

    DISCONNECTED -> CONNECTING -> READY -> CLOSED
         ^                          |
         +---- command failure -----+

Commands are only issued in READY. The first caller that finds the provider
disconnected starts one connection task; concurrent callers await the same
task. The task keeps retrying with capped exponential backoff until it
succeeds or the provider is closed, while each caller waits at most
``ready_timeout`` before giving up with StorageUnavailableError.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_never,
    wait_exponential,
)
from upstash_redis.asyncio import Redis as AsyncRedis
from upstash_redis.errors import UpstashError

from cartcore.cart.models import Cart
from cartcore.config import Settings
from cartcore.errors import ERROR_STORAGE_UNAVAILABLE, ConfigError, StorageUnavailableError
from cartcore.logging import get_logger, sanitize_id_for_logging
from .base import StorageProvider
from .keys import CartKeys, effective_cart_ttl

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle of the cache connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


ClientFactory = Callable[[], Any]


class DirectCacheStorageProvider(StorageProvider):
    """Cart storage on a directly connected Upstash Redis."""

    name = "direct"

    def __init__(
        self,
        url: str = "",
        token: str = "",
        connect_timeout: float = 15.0,
        command_timeout: float = 10.0,
        ready_timeout: float = 10.0,
        reconnect_max_delay: float = 5.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.url = url
        self.token = token
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.ready_timeout = ready_timeout
        self.reconnect_max_delay = reconnect_max_delay
        self._client_factory = client_factory or self._create_client
        self._client: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._connect_task: asyncio.Task | None = None
        self.connect_attempts = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "DirectCacheStorageProvider":
        return cls(
            url=settings.redis_url,
            token=settings.redis_token,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
            ready_timeout=settings.ready_timeout,
            reconnect_max_delay=settings.reconnect_max_delay,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    # ==================== CONNECTION LIFECYCLE ====================

    def _create_client(self) -> AsyncRedis:
        if not self.url or not self.token:
            raise ConfigError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        return AsyncRedis(
            url=self.url,
            token=self.token,
            rest_retries=1,
            rest_retry_interval=1,
            allow_telemetry=False,
        )

    async def init(self) -> None:
        """Start connecting in the background; first commands wait for it."""
        if self._state is ConnectionState.DISCONNECTED:
            self._start_connect()
        logger.info("Direct cache storage provider initialized")

    async def close(self) -> None:
        self._state = ConnectionState.CLOSED
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        client, self._client = self._client, None
        if client is not None:
            await self._discard(client)
        logger.info("Direct cache storage provider closed")

    def _start_connect(self) -> asyncio.Task:
        self._state = ConnectionState.CONNECTING
        self._connect_task = asyncio.create_task(self._connect_loop())
        self._connect_task.add_done_callback(self._on_connect_done)
        return self._connect_task

    def _on_connect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Redis connect gave up: {error}")

    def _log_reconnect(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Redis reconnecting, attempt {retry_state.attempt_number}, "
            f"delay {delay:.1f}s: {error}"
        )

    async def _connect_loop(self) -> None:
        try:
            async for attempt in AsyncRetrying(
                # Cancellation comes from close(); never retry it
                retry=retry_if_not_exception_type((ConfigError, asyncio.CancelledError)),
                wait=wait_exponential(multiplier=0.5, max=self.reconnect_max_delay),
                stop=stop_never,
                before_sleep=self._log_reconnect,
                reraise=True,
            ):
                with attempt:
                    await self._open_client()
        except BaseException:
            if self._state is ConnectionState.CONNECTING:
                self._state = ConnectionState.DISCONNECTED
            raise

    async def _open_client(self) -> None:
        self.connect_attempts += 1
        client = self._client_factory()
        try:
            pong = await asyncio.wait_for(client.ping(), timeout=self.connect_timeout)
        except BaseException:
            await self._discard(client)
            raise
        if pong not in ("PONG", b"PONG", True):
            await self._discard(client)
            raise ConnectionError(f"Unexpected PING reply: {pong!r}")

        if self._state is ConnectionState.CLOSED:
            await self._discard(client)
            return
        self._client = client
        self._state = ConnectionState.READY
        logger.info(f"Redis client ready after {self.connect_attempts} attempt(s)")

    async def _discard(self, client: Any) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing Redis client: {e}")

    async def _ensure_ready(self) -> Any:
        if self._state is ConnectionState.CLOSED:
            raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: provider closed", backend=self.name)
        if self._state is ConnectionState.READY and self._client is not None:
            return self._client

        task = self._connect_task
        if task is None or task.done():
            task = self._start_connect()

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.ready_timeout)
        except asyncio.TimeoutError as e:
            raise StorageUnavailableError(
                f"Redis not ready after {self.ready_timeout}s, state: {self._state.value}",
                backend=self.name,
            ) from e
        except asyncio.CancelledError:
            if self._state is ConnectionState.CLOSED:
                raise StorageUnavailableError(
                    f"{ERROR_STORAGE_UNAVAILABLE}: provider closed", backend=self.name
                ) from None
            raise
        except ConfigError as e:
            raise StorageUnavailableError(f"{ERROR_STORAGE_UNAVAILABLE}: {e}", backend=self.name) from e

        if self._state is not ConnectionState.READY or self._client is None:
            raise StorageUnavailableError(
                f"{ERROR_STORAGE_UNAVAILABLE}: state {self._state.value}", backend=self.name
            )
        return self._client

    async def _mark_disconnected(self, client: Any) -> None:
        if self._client is client and self._state is ConnectionState.READY:
            self._client = None
            self._state = ConnectionState.DISCONNECTED
            logger.warning("Redis connection lost, will reconnect on next call")
            await self._discard(client)

    async def _execute(
        self,
        operation: str,
        key: str,
        command: Callable[[Any], Awaitable[Any]],
    ) -> Any:
        client = await self._ensure_ready()
        try:
            return await asyncio.wait_for(command(client), timeout=self.command_timeout)
        except UpstashError as e:
            logger.error(f"Redis {operation} rejected for {sanitize_id_for_logging(key)}: {e}")
            raise StorageUnavailableError(
                f"{ERROR_STORAGE_UNAVAILABLE}: {operation} failed", backend=self.name
            ) from e
        except Exception as e:
            logger.error(f"Redis {operation} failed for {sanitize_id_for_logging(key)}: {e}")
            await self._mark_disconnected(client)
            raise StorageUnavailableError(
                f"{ERROR_STORAGE_UNAVAILABLE}: {operation} failed", backend=self.name
            ) from e

    # ==================== STORAGE OPERATIONS ====================

    async def get(self, key: str) -> Cart | None:
        raw = await self._execute("get", key, lambda client: client.get(key))
        cart = await self._decode(key, raw)
        if cart is None:
            logger.debug(f"Cart not found in Redis: {sanitize_id_for_logging(key)}")
        return cart

    async def save(self, cart: Cart, ttl: int) -> None:
        key = CartKeys.cart_key(cart.user_id)
        ttl_seconds = effective_cart_ttl(ttl)
        payload = json.dumps(cart.to_dict())
        # SET ... EX writes value and expiry in one command
        await self._execute("save", key, lambda client: client.set(key, payload, ex=ttl_seconds))
        logger.debug(
            f"Cart saved to Redis: {sanitize_id_for_logging(key)}, "
            f"items={len(cart.items)}, ttl={ttl_seconds}s"
        )

    async def delete(self, key: str) -> None:
        await self._execute("delete", key, lambda client: client.delete(key))
        logger.debug(f"Deleted Redis key: {sanitize_id_for_logging(key)}")

    async def create_if_absent(self, key: str, value: str, ttl: int) -> bool:
        result = await self._execute(
            "create", key, lambda client: client.set(key, value, ex=int(ttl), nx=True)
        )
        return bool(result)

    async def health(self) -> bool:
        if self._state is ConnectionState.CLOSED:
            return False
        try:
            pong = await self._execute("ping", "health", lambda client: client.ping())
        except StorageUnavailableError:
            return False
        return pong in ("PONG", b"PONG", True)
