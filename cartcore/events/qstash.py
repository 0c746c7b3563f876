"""QStash event publisher.

Direct broker backend for deployments without a sidecar. Events go to a
QStash URL group, which fans each message out to every subscribed endpoint.
The group-to-endpoint binding is declared once on startup.
"""

from typing import Any

from qstash import AsyncQStash

from cartcore.config import Settings
from cartcore.errors import ConfigError
from cartcore.logging import get_logger
from .base import CloudEvent, EventPublisher

logger = get_logger(__name__)


class QStashEventPublisher(EventPublisher):
    """Event publishing to a QStash URL group."""

    name = "qstash"

    def __init__(
        self,
        token: str = "",
        url_group: str = "cart-events",
        endpoints: tuple[str, ...] = (),
        source: str = "cart-service",
        namespace: str = "com.shop",
        client: Any = None,
    ) -> None:
        super().__init__(source=source, namespace=namespace)
        self.token = token
        self.url_group = url_group
        self.endpoints = tuple(endpoints)
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "QStashEventPublisher":
        return cls(
            token=settings.qstash_token,
            url_group=settings.qstash_url_group,
            endpoints=settings.qstash_endpoints,
            source=settings.service_name,
            namespace=settings.event_namespace,
        )

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.token:
                raise ConfigError("QSTASH_TOKEN must be set")
            self._client = AsyncQStash(token=self.token)
        return self._client

    async def init(self) -> None:
        """Bind the URL group to its endpoints (idempotent upsert)."""
        client = self._get_client()
        if self.endpoints:
            await client.url_group.upsert_endpoints(
                url_group=self.url_group,
                endpoints=[{"url": url} for url in self.endpoints],
            )
            logger.info(f"QStash URL group {self.url_group} bound to {len(self.endpoints)} endpoint(s)")
        else:
            logger.warning(f"QStash URL group {self.url_group} has no configured endpoints, binding left as is")

    async def _send(self, topic: str, event: CloudEvent) -> None:
        client = self._get_client()
        await client.message.publish_json(
            url_group=self.url_group,
            body=event.to_dict(),
            headers={"Ce-Type": event.type, "X-Event-Topic": topic},
            deduplication_id=event.id,
        )

    async def health(self) -> bool:
        try:
            await self._get_client().url_group.get(self.url_group)
            return True
        except Exception as e:
            logger.warning(f"QStash health check failed: {e}")
            return False
