"""
Tests for cart models
"""

import json
from datetime import timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from cartcore.cart import AddItemRequest, Cart, CartItem
from conftest import START, make_item


class TestCartItem:
    """Tests for CartItem dataclass."""

    def test_subtotal_is_price_times_quantity(self):
        """Subtotal is derived, whatever was passed in."""
        item = CartItem(
            product_id="prod-1",
            product_name="Mug",
            sku="MUG-1",
            price=Decimal("4.50"),
            quantity=3,
            subtotal=Decimal("999"),
        )

        assert item.subtotal == Decimal("13.50")
        assert item.added_at is not None

    def test_float_price_keeps_decimal_precision(self):
        item = CartItem(product_id="p", product_name="n", sku="S", price=0.1, quantity=3)

        assert item.price == Decimal("0.1")
        assert item.subtotal == Decimal("0.3")

    def test_to_dict_uses_camel_case_and_omits_empty_optionals(self):
        item = make_item("SKU-A", quantity=2, price="10.00", category="mugs")

        data = item.to_dict()

        assert data["productId"] == "prod-sku-a"
        assert data["price"] == "10.00"
        assert data["subtotal"] == "20.00"
        assert data["category"] == "mugs"
        assert "imageUrl" not in data
        assert data["addedAt"] == START.isoformat()

    def test_from_dict_accepts_epoch_millis(self):
        """Records written by older writers store addedAt as epoch ms."""
        data = {
            "productId": "p",
            "productName": "n",
            "sku": "S",
            "price": 5,
            "quantity": 2,
            "addedAt": int(START.timestamp() * 1000),
        }

        item = CartItem.from_dict(data)

        assert item.added_at == START
        assert item.subtotal == Decimal("10")


class TestCart:
    """Tests for Cart dataclass."""

    def test_empty_cart(self):
        cart = Cart(user_id="user-1")

        assert cart.is_empty
        assert cart.total_price == Decimal("0")
        assert cart.total_items == 0
        assert cart.created_at.tzinfo is not None

    def test_find_item(self):
        cart = Cart(user_id="user-1", items=[make_item("A"), make_item("B")])

        assert cart.find_item("B").sku == "B"
        assert cart.find_item("C") is None

    def test_json_round_trip(self):
        cart = Cart(
            user_id="user-1",
            items=[make_item("A", quantity=2)],
            total_price=Decimal("20.00"),
            total_items=2,
            created_at=START,
            updated_at=START,
            expires_at=START,
        )

        restored = Cart.from_dict(json.loads(json.dumps(cart.to_dict())))

        assert restored == cart

    def test_from_dict_naive_timestamp_is_utc(self):
        data = {
            "userId": "user-1",
            "items": [],
            "createdAt": "2025-01-01T12:00:00",
            "updatedAt": "2025-01-01T12:00:00Z",
            "expiresAt": "2025-01-02T12:00:00+00:00",
        }

        cart = Cart.from_dict(data)

        assert cart.created_at.tzinfo == timezone.utc
        assert cart.updated_at == START

    def test_from_dict_missing_user_id_raises(self):
        with pytest.raises(KeyError):
            Cart.from_dict({"items": []})

    def test_is_expired(self):
        cart = Cart(user_id="u", created_at=START, updated_at=START, expires_at=START)

        assert cart.is_expired(START)


class TestAddItemRequest:
    """Tests for the add-item payload model."""

    def test_parses_camel_case(self, sample_request):
        request = AddItemRequest.model_validate(sample_request)

        assert request.product_id == "prod-1"
        assert request.price == Decimal("19.99")
        assert request.is_complete

    def test_incomplete_without_sku(self):
        request = AddItemRequest(product_id="prod-1", quantity=1)

        assert not request.is_complete

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            AddItemRequest.model_validate({"productId": "p", "price": "-1"})

    def test_empty_product_id_rejected(self):
        with pytest.raises(ValidationError):
            AddItemRequest.model_validate({"productId": ""})

    def test_to_item(self, sample_request):
        item = AddItemRequest.model_validate(sample_request).to_item()

        assert item.sku == "TSHIRT-001-RED-M"
        assert item.subtotal == Decimal("39.98")
        assert item.selected_color == "red"
