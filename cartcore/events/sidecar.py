"""Sidecar event publisher.

Publishes envelopes through the pub/sub API of the local sidecar:

    POST /v1.0/publish/{pubsub}/{topic}
"""

from typing import Any
from urllib.parse import quote

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cartcore.config import Settings
from cartcore.logging import get_logger
from .base import CloudEvent, EventPublisher

logger = get_logger(__name__)

CLOUDEVENTS_CONTENT_TYPE = "application/cloudevents+json"


class SidecarEventPublisher(EventPublisher):
    """Event publishing through the sidecar pub/sub component."""

    name = "sidecar"

    def __init__(
        self,
        base_url: str,
        pubsub_name: str = "pubsub",
        source: str = "cart-service",
        namespace: str = "com.shop",
        connect_timeout: float = 15.0,
        command_timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(source=source, namespace=namespace)
        self.base_url = base_url.rstrip("/")
        self.pubsub_name = pubsub_name
        self._timeout = httpx.Timeout(command_timeout, connect=connect_timeout)
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SidecarEventPublisher":
        return cls(
            base_url=settings.sidecar_base_url,
            pubsub_name=settings.pubsub_name,
            source=settings.service_name,
            namespace=settings.event_namespace,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
        )

    async def init(self) -> None:
        await self._get_http_client()
        logger.info(f"Sidecar event publisher ready: {self.base_url}, pubsub={self.pubsub_name}")

    async def close(self) -> None:
        await super().close()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http_client

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        client = await self._get_http_client()
        return await client.post(
            path,
            json=body,
            headers={"Content-Type": CLOUDEVENTS_CONTENT_TYPE},
        )

    async def _send(self, topic: str, event: CloudEvent) -> None:
        path = f"/v1.0/publish/{quote(self.pubsub_name, safe='')}/{quote(topic, safe='')}"
        response = await self._post(path, event.to_dict())
        # The sidecar answers 204 on success
        response.raise_for_status()

    async def health(self) -> bool:
        try:
            client = await self._get_http_client()
            response = await client.get("/v1.0/healthz")
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning(f"Sidecar health check failed: {e}")
            return False
