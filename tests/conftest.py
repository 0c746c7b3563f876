"""Pytest configuration and fixtures"""
import json
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

# Keep tests independent of any local .env / deployment settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from cartcore.cart.models import Cart, CartItem
from cartcore.config import Settings
from cartcore.events.base import CloudEvent, EventPublisher
from cartcore.lock import DistributedLock
from cartcore.storage.base import StorageProvider
from cartcore.storage.keys import CartKeys, effective_cart_ttl

START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeStorageProvider(StorageProvider):
    """In-memory storage honouring TTLs against a FakeClock."""

    name = "memory"

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data: dict[str, tuple[str, datetime]] = {}
        self.saves = 0
        self.deletes = 0
        self.healthy = True
        self.fail_with: Exception | None = None

    def _live(self, key: str) -> str | None:
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self.data[key]
            return None
        return value

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def get(self, key: str) -> Cart | None:
        self._check()
        return await self._decode(key, self._live(key))

    async def save(self, cart: Cart, ttl: int) -> None:
        self._check()
        self.saves += 1
        expires_at = self.clock() + timedelta(seconds=effective_cart_ttl(ttl))
        self.data[CartKeys.cart_key(cart.user_id)] = (json.dumps(cart.to_dict()), expires_at)

    async def delete(self, key: str) -> None:
        self._check()
        self.deletes += 1
        self.data.pop(key, None)

    async def create_if_absent(self, key: str, value: str, ttl: int) -> bool:
        self._check()
        if self._live(key) is not None:
            return False
        self.data[key] = (value, self.clock() + timedelta(seconds=ttl))
        return True

    async def health(self) -> bool:
        return self.healthy

    def ttl_of(self, key: str) -> float:
        return (self.data[key][1] - self.clock()).total_seconds()


class RecordingPublisher(EventPublisher):
    """Publisher that keeps every sent envelope."""

    name = "recording"

    def __init__(self, fail: bool = False):
        super().__init__(source="cart-service-test", namespace="com.shop")
        self.sent: list[tuple[str, CloudEvent]] = []
        self.fail = fail

    async def _send(self, topic: str, event: CloudEvent) -> None:
        if self.fail:
            raise ConnectionError("broker down")
        self.sent.append((topic, event))

    async def health(self) -> bool:
        return not self.fail

    @property
    def topics(self) -> list[str]:
        return [topic for topic, _ in self.sent]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with small limits so limit paths are easy to reach."""
    return Settings(
        service_name="cart-service-test",
        max_items=3,
        max_item_quantity=10,
        cart_ttl=30 * 86400,
        guest_cart_ttl=7 * 86400,
        lock_ttl=30,
    )


@pytest.fixture
def storage(clock):
    return FakeStorageProvider(clock)


@pytest.fixture
def lock(storage):
    return DistributedLock(storage, ttl=30)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def cart_service(storage, lock, publisher, settings, clock):
    from cartcore.cart.service import CartService

    return CartService(
        storage=storage,
        lock=lock,
        publisher=publisher,
        settings=settings,
        clock=clock,
    )


def make_item(sku: str = "SKU-A", quantity: int = 1, price: str = "10.00", **kwargs) -> CartItem:
    return CartItem(
        product_id=kwargs.pop("product_id", f"prod-{sku.lower()}"),
        product_name=kwargs.pop("product_name", f"Product {sku}"),
        sku=sku,
        price=Decimal(price),
        quantity=quantity,
        added_at=kwargs.pop("added_at", START),
        **kwargs,
    )


@pytest.fixture
def sample_request():
    """Complete add-item payload as a client sends it."""
    return {
        "productId": "prod-1",
        "productName": "Cotton T-Shirt",
        "sku": "TSHIRT-001-RED-M",
        "price": "19.99",
        "quantity": 2,
        "imageUrl": "https://cdn.example.com/tshirt.png",
        "category": "apparel",
        "selectedColor": "red",
        "selectedSize": "m",
    }
