"""
Tests for event publishing: envelope, backends and cart payloads
"""

import asyncio
import json
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from cartcore.cart.models import Cart
from cartcore.events import cart_events
from cartcore.events.cart_events import CartTopics
from cartcore.events.log import LogEventPublisher
from cartcore.events.qstash import QStashEventPublisher
from cartcore.events.sidecar import SidecarEventPublisher
from conftest import START, RecordingPublisher, make_item

BASE_URL = "http://localhost:3508"


class TestEnvelope:
    """Tests for the CloudEvents-style envelope."""

    @pytest.mark.asyncio
    async def test_envelope_fields(self):
        publisher = RecordingPublisher()

        assert await publisher.publish_event("cart.item.added", {"userId": "user-1"}) is True

        topic, event = publisher.sent[0]
        envelope = event.to_dict()
        assert topic == "cart.item.added"
        assert envelope["type"] == "com.shop.cart.item.added"
        assert envelope["source"] == "cart-service-test"
        assert envelope["specversion"] == "1.0"
        assert envelope["datacontenttype"] == "application/json"
        assert envelope["data"] == {"userId": "user-1"}
        uuid.UUID(envelope["id"])
        uuid.UUID(envelope["correlationId"])

    @pytest.mark.asyncio
    async def test_ids_are_propagated(self):
        publisher = RecordingPublisher()

        await publisher.publish_event("cart.cleared", {}, correlation_id="corr-1", event_id="evt-1")

        envelope = publisher.sent[0][1].to_dict()
        assert envelope["id"] == "evt-1"
        assert envelope["correlationId"] == "corr-1"

    @pytest.mark.asyncio
    async def test_failure_returns_false(self):
        publisher = RecordingPublisher(fail=True)

        assert await publisher.publish_event("cart.cleared", {}) is False

    @pytest.mark.asyncio
    async def test_dispatch_runs_in_background_and_drains(self):
        publisher = RecordingPublisher()

        task = publisher.dispatch("cart.cleared", {"userId": "u"}, "corr-1")
        assert publisher.pending == 1

        await publisher.drain()

        assert task.done() and task.result() is True
        assert publisher.pending == 0
        assert publisher.topics == ["cart.cleared"]

    @pytest.mark.asyncio
    async def test_drain_cancels_stuck_publishes(self):
        publisher = RecordingPublisher()
        gate = asyncio.Event()

        async def stuck(topic, event):
            await gate.wait()

        publisher._send = stuck
        task = publisher.dispatch("cart.cleared", {})

        await publisher.drain(timeout=0.01)
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()


class TestSidecarEventPublisher:
    @pytest.mark.asyncio
    async def test_posts_cloudevent(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["content_type"] = request.headers["content-type"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(204)

        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        publisher = SidecarEventPublisher(BASE_URL, pubsub_name="pubsub", http_client=client)

        assert await publisher.publish_event("cart.item.added", {"userId": "u"}) is True

        assert captured["path"] == "/v1.0/publish/pubsub/cart.item.added"
        assert captured["content_type"] == "application/cloudevents+json"
        assert captured["body"]["type"] == "com.shop.cart.item.added"
        await publisher.close()

    @pytest.mark.asyncio
    async def test_broker_error_returns_false(self):
        client = httpx.AsyncClient(
            base_url=BASE_URL, transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        publisher = SidecarEventPublisher(BASE_URL, http_client=client)

        assert await publisher.publish_event("cart.cleared", {}) is False


class TestQStashEventPublisher:
    def _client(self):
        client = Mock()
        client.message.publish_json = AsyncMock(return_value=[])
        client.url_group.upsert_endpoints = AsyncMock()
        client.url_group.get = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_init_binds_endpoints(self):
        client = self._client()
        publisher = QStashEventPublisher(
            url_group="cart-events",
            endpoints=("https://a.example.com/events", "https://b.example.com/events"),
            client=client,
        )

        await publisher.init()

        client.url_group.upsert_endpoints.assert_awaited_once_with(
            url_group="cart-events",
            endpoints=[{"url": "https://a.example.com/events"}, {"url": "https://b.example.com/events"}],
        )

    @pytest.mark.asyncio
    async def test_publish_to_url_group_with_dedup(self):
        client = self._client()
        publisher = QStashEventPublisher(url_group="cart-events", client=client)

        assert await publisher.publish_event("cart.cleared", {"userId": "u"}, event_id="evt-1") is True

        kwargs = client.message.publish_json.await_args.kwargs
        assert kwargs["url_group"] == "cart-events"
        assert kwargs["deduplication_id"] == "evt-1"
        assert kwargs["body"]["data"] == {"userId": "u"}

    @pytest.mark.asyncio
    async def test_missing_token_fails_publish(self):
        publisher = QStashEventPublisher(token="")

        assert await publisher.publish_event("cart.cleared", {}) is False

    @pytest.mark.asyncio
    async def test_health(self):
        client = self._client()
        client.url_group.get.side_effect = RuntimeError("unauthorized")
        publisher = QStashEventPublisher(client=client)

        assert await publisher.health() is False


class TestLogEventPublisher:
    @pytest.mark.asyncio
    async def test_always_succeeds(self):
        publisher = LogEventPublisher()

        assert await publisher.publish_event("cart.cleared", {"userId": "u"}) is True
        assert await publisher.health() is True


class TestCartPayloads:
    """Tests for cart event payload builders."""

    @pytest.fixture
    def cart(self):
        item = make_item("A", 2, "10.50", category="mugs", selected_color="red")
        return Cart(user_id="user-1", items=[item], total_price=Decimal("21.00"), total_items=2)

    def test_topics(self):
        assert CartTopics.ALL == (
            "cart.item.added",
            "cart.item.updated",
            "cart.item.removed",
            "cart.cleared",
            "cart.transferred",
        )

    def test_item_added(self, cart):
        payload = cart_events.item_added(cart, cart.items[0], START)

        assert payload["userId"] == "user-1"
        assert payload["cartId"] == "user-1"
        assert payload["sku"] == "A"
        assert payload["price"] == 10.5
        assert payload["subtotal"] == 21.0
        assert payload["category"] == "mugs"
        assert payload["selectedColor"] == "red"
        assert payload["cartItemCount"] == 2
        assert payload["cartTotalAmount"] == 21.0
        assert payload["timestamp"] == int(START.timestamp() * 1000)

    def test_item_updated(self, cart):
        payload = cart_events.item_updated(cart, cart.items[0], old_quantity=5, now=START)

        assert payload["oldQuantity"] == 5
        assert payload["newQuantity"] == 2
        assert payload["quantityChange"] == -3

    def test_cart_cleared(self, cart):
        payload = cart_events.cart_cleared(cart, START)

        assert payload["clearedItemCount"] == 1
        assert payload["clearedTotalAmount"] == 21.0

    def test_cart_transferred(self, cart):
        payload = cart_events.cart_transferred("guest-1", "user-1", 1, cart, START)

        assert payload["fromGuestId"] == "guest-1"
        assert payload["toUserId"] == "user-1"
        assert payload["transferredItemCount"] == 1
