"""Log-only event publisher, used when no broker is configured."""

import json

from cartcore.config import Settings
from cartcore.logging import get_logger
from .base import CloudEvent, EventPublisher

logger = get_logger(__name__)


class LogEventPublisher(EventPublisher):
    name = "log"

    @classmethod
    def from_settings(cls, settings: Settings) -> "LogEventPublisher":
        return cls(source=settings.service_name, namespace=settings.event_namespace)

    async def init(self) -> None:
        logger.warning("No message broker configured, cart events will only be logged")

    async def _send(self, topic: str, event: CloudEvent) -> None:
        logger.info(f"[event] {topic}: {json.dumps(event.to_dict(), default=str)}")

    async def health(self) -> bool:
        return True
