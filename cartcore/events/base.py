"""Base Event Publisher.

Wraps domain payloads in a CloudEvents-style envelope and hands them to a
broker backend. Publishing is best-effort: failures are logged and reported
as False, never raised, and never undo the cart write that triggered them.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cartcore.errors import PublishFailedError
from cartcore.logging import get_logger

logger = get_logger(__name__)

SPEC_VERSION = "1.0"
CONTENT_TYPE_JSON = "application/json"


@dataclass
class CloudEvent:
    """Envelope placed around every published payload."""
    source: str
    type: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    time: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    specversion: str = SPEC_VERSION
    datacontenttype: str = CONTENT_TYPE_JSON

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "type": self.type,
            "specversion": self.specversion,
            "time": self.time,
            "datacontenttype": self.datacontenttype,
            "data": self.data,
            "correlationId": self.correlation_id,
        }


class EventPublisher(ABC):
    """Base class for event broker backends.

    Each backend must implement:
    - _send() - Deliver one envelope for a topic
    - health() - Broker connectivity probe

    Callers use publish_event() (awaitable, returns bool) or dispatch()
    (fire-and-forget background task).
    """

    # Mode identifier used by the provider registry
    name: str = ""

    def __init__(self, source: str = "cart-service", namespace: str = "com.shop") -> None:
        self.source = source
        self.namespace = namespace
        self._pending: set[asyncio.Task] = set()

    async def init(self) -> None:
        """Prepare clients and declare bindings. Called once at startup."""

    async def close(self) -> None:
        """Wait for in-flight publishes, then release clients."""
        await self.drain()

    @abstractmethod
    async def _send(self, topic: str, event: CloudEvent) -> None:
        """Deliver one envelope. Raise on any failure."""
        pass

    @abstractmethod
    async def health(self) -> bool:
        pass

    def build_event(
        self,
        topic: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
        event_id: str | None = None,
    ) -> CloudEvent:
        event = CloudEvent(source=self.source, type=f"{self.namespace}.{topic}", data=payload)
        if event_id:
            event.id = event_id
        if correlation_id:
            event.correlation_id = correlation_id
        return event

    async def publish_event(
        self,
        topic: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
        event_id: str | None = None,
    ) -> bool:
        """
        Publish one event.

        Args:
            topic: Event topic (e.g. "cart.item.added")
            payload: Topic-specific data
            correlation_id: Propagated id, generated if absent
            event_id: Envelope id, generated if absent

        Returns:
            True if the broker accepted the event
        """
        event = self.build_event(topic, payload, correlation_id, event_id)
        try:
            await self._send(topic, event)
        except Exception as e:
            error = PublishFailedError(f"Failed to publish {topic}: {e}", topic=topic, event_id=event.id)
            logger.warning(
                f"{error.message} (backend={self.name}, correlationId={event.correlation_id})",
                exc_info=True,
            )
            return False

        logger.info(f"Event published: topic={topic}, id={event.id}, correlationId={event.correlation_id}")
        return True

    def dispatch(
        self,
        topic: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> asyncio.Task:
        """
        Publish in the background and return immediately.

        The task is kept referenced until it finishes so it cannot be
        garbage-collected mid-flight; its result is never awaited by the
        caller of the cart operation.
        """
        task = asyncio.create_task(self.publish_event(topic, payload, correlation_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait up to ``timeout`` seconds for background publishes."""
        if not self._pending:
            return
        done, not_done = await asyncio.wait(set(self._pending), timeout=timeout)
        if not_done:
            logger.warning(f"Abandoning {len(not_done)} unfinished event publish(es) on shutdown")
            for task in not_done:
                task.cancel()
