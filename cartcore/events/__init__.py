"""Cart event publishing: envelope, publisher backends and cart payloads."""
from .base import CloudEvent, EventPublisher
from .cart_events import CartTopics
from .log import LogEventPublisher
from .qstash import QStashEventPublisher
from .sidecar import SidecarEventPublisher

__all__ = [
    "CloudEvent",
    "EventPublisher",
    "CartTopics",
    "LogEventPublisher",
    "QStashEventPublisher",
    "SidecarEventPublisher",
]
