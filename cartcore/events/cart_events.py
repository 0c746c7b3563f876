"""
Cart domain events: topics and payload builders.

Payload keys are camelCase because consumers outside this service read them.
Amounts are floats here and only here.
"""

from datetime import datetime
from typing import Any, Optional

from cartcore.cart.models import Cart, CartItem, utcnow
from cartcore.money import to_float


class CartTopics:
    """Topic names for cart events."""
    ITEM_ADDED = "cart.item.added"
    ITEM_UPDATED = "cart.item.updated"
    ITEM_REMOVED = "cart.item.removed"
    CLEARED = "cart.cleared"
    TRANSFERRED = "cart.transferred"

    ALL = (ITEM_ADDED, ITEM_UPDATED, ITEM_REMOVED, CLEARED, TRANSFERRED)


def _timestamp_ms(now: Optional[datetime] = None) -> int:
    return int((now or utcnow()).timestamp() * 1000)


def _item_fields(item: CartItem) -> dict[str, Any]:
    return {
        "productId": item.product_id,
        "productName": item.product_name,
        "sku": item.sku,
        "price": to_float(item.price),
        "quantity": item.quantity,
        "subtotal": to_float(item.subtotal),
        "category": item.category,
        "imageUrl": item.image_url,
        "selectedColor": item.selected_color,
        "selectedSize": item.selected_size,
    }


def _cart_fields(cart: Cart) -> dict[str, Any]:
    return {
        "userId": cart.user_id,
        "cartId": cart.user_id,
        "cartItemCount": cart.total_items,
        "cartTotalAmount": to_float(cart.total_price),
    }


def item_added(cart: Cart, item: CartItem, now: Optional[datetime] = None) -> dict[str, Any]:
    """Payload for cart.item.added. ``item`` is the line as stored after the add."""
    return {**_cart_fields(cart), **_item_fields(item), "timestamp": _timestamp_ms(now)}


def item_updated(
    cart: Cart,
    item: CartItem,
    old_quantity: int,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    return {
        **_cart_fields(cart),
        **_item_fields(item),
        "oldQuantity": old_quantity,
        "newQuantity": item.quantity,
        "quantityChange": item.quantity - old_quantity,
        "timestamp": _timestamp_ms(now),
    }


def item_removed(cart: Cart, item: CartItem, now: Optional[datetime] = None) -> dict[str, Any]:
    """Payload for cart.item.removed. ``item`` is the line as it was before removal."""
    return {**_cart_fields(cart), **_item_fields(item), "timestamp": _timestamp_ms(now)}


def cart_cleared(previous: Cart, now: Optional[datetime] = None) -> dict[str, Any]:
    return {
        "userId": previous.user_id,
        "cartId": previous.user_id,
        "clearedItemCount": len(previous.items),
        "clearedTotalAmount": to_float(previous.total_price),
        "timestamp": _timestamp_ms(now),
    }


def cart_transferred(
    guest_id: str,
    user_id: str,
    transferred_count: int,
    cart: Cart,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    return {
        "fromGuestId": guest_id,
        "toUserId": user_id,
        "transferredItemCount": transferred_count,
        **_cart_fields(cart),
        "timestamp": _timestamp_ms(now),
    }
