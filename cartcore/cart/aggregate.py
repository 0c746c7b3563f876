"""
Cart aggregate: pure mutation and merge logic.

Every function takes a Cart and returns a new Cart, leaving the input
untouched, or raises a CartError. Nothing here performs I/O.
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from cartcore.errors import (
    ERROR_NEGATIVE_QUANTITY,
    ERROR_INVALID_QUANTITY,
    InvalidQuantityError,
    ItemNotFoundError,
    LimitExceededError,
)
from cartcore.money import multiply, total
from .models import Cart, CartItem, utcnow

GUEST_PREFIX = "guest-"


@dataclass
class MergeResult:
    """Outcome of merging a guest cart into a user cart."""
    cart: Cart
    merged_count: int = 0
    dropped_skus: list[str] = field(default_factory=list)


def is_guest(user_id: str) -> bool:
    """Guest carts are keyed by client-generated ids starting with ``guest-``."""
    return user_id.startswith(GUEST_PREFIX)


def new_cart(user_id: str, ttl_seconds: int, now: Optional[datetime] = None) -> Cart:
    """Empty cart expiring ``ttl_seconds`` from now."""
    now = now or utcnow()
    return Cart(
        user_id=user_id,
        items=[],
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )


def refresh_expiry(cart: Cart, ttl_seconds: int, now: Optional[datetime] = None) -> Cart:
    """Copy of the cart whose expiry slides to ``now + ttl_seconds``."""
    refreshed = copy.deepcopy(cart)
    refreshed.expires_at = (now or utcnow()) + timedelta(seconds=ttl_seconds)
    return refreshed


def _recalc_in_place(cart: Cart, now: Optional[datetime]) -> None:
    for item in cart.items:
        item.subtotal = multiply(item.price, item.quantity)
    cart.total_price = total(item.subtotal for item in cart.items)
    cart.total_items = sum(item.quantity for item in cart.items)
    cart.updated_at = now or utcnow()


def _index_of(cart: Cart, sku: str) -> int:
    for index, item in enumerate(cart.items):
        if item.sku == sku:
            return index
    return -1


def recalc_totals(cart: Cart, now: Optional[datetime] = None) -> Cart:
    """Recompute subtotals and cart totals from the items."""
    result = copy.deepcopy(cart)
    _recalc_in_place(result, now)
    return result


def add_item(
    cart: Cart,
    item: CartItem,
    max_items: int,
    max_quantity: int,
    now: Optional[datetime] = None,
) -> Cart:
    """
    Add an item, or increase the quantity of the line with the same SKU.

    Raises:
        InvalidQuantityError: If item.quantity is not positive
        LimitExceededError: If the line would exceed max_quantity, or a new
            line would exceed max_items
    """
    if item.quantity <= 0:
        raise InvalidQuantityError(ERROR_INVALID_QUANTITY, sku=item.sku)

    result = copy.deepcopy(cart)
    index = _index_of(result, item.sku)

    if index >= 0:
        existing = result.items[index]
        new_quantity = existing.quantity + item.quantity
        if new_quantity > max_quantity:
            raise LimitExceededError(
                f"Maximum quantity per item ({max_quantity}) exceeded",
                sku=item.sku,
                limit=max_quantity,
            )
        existing.quantity = new_quantity
    else:
        if len(result.items) >= max_items:
            raise LimitExceededError(
                f"Maximum number of items ({max_items}) exceeded",
                sku=item.sku,
                limit=max_items,
            )
        if item.quantity > max_quantity:
            raise LimitExceededError(
                f"Maximum quantity per item ({max_quantity}) exceeded",
                sku=item.sku,
                limit=max_quantity,
            )
        added = copy.deepcopy(item)
        added.added_at = now or utcnow()
        result.items.append(added)

    _recalc_in_place(result, now)
    return result


def update_quantity(
    cart: Cart,
    sku: str,
    quantity: int,
    max_quantity: int,
    now: Optional[datetime] = None,
) -> Cart:
    """
    Set the quantity of a line. Zero removes it.

    Raises:
        InvalidQuantityError: If quantity is negative
        LimitExceededError: If quantity exceeds max_quantity
        ItemNotFoundError: If no line has this SKU
    """
    if quantity < 0:
        raise InvalidQuantityError(ERROR_NEGATIVE_QUANTITY, sku=sku)
    if quantity > max_quantity:
        raise LimitExceededError(
            f"Maximum quantity per item ({max_quantity}) exceeded",
            sku=sku,
            limit=max_quantity,
        )

    index = _index_of(cart, sku)
    if index < 0:
        raise ItemNotFoundError(f"Item with SKU {sku} not found in cart", sku=sku)

    result = copy.deepcopy(cart)
    if quantity == 0:
        del result.items[index]
    else:
        result.items[index].quantity = quantity

    _recalc_in_place(result, now)
    return result


def remove_item(cart: Cart, sku: str, now: Optional[datetime] = None) -> Cart:
    """
    Remove the line with this SKU.

    Raises:
        ItemNotFoundError: If no line has this SKU
    """
    index = _index_of(cart, sku)
    if index < 0:
        raise ItemNotFoundError(f"Item with SKU {sku} not found in cart", sku=sku)

    result = copy.deepcopy(cart)
    del result.items[index]
    _recalc_in_place(result, now)
    return result


def merge_guest_into_user(
    guest_cart: Cart,
    user_cart: Cart,
    max_items: int,
    max_quantity: int,
    now: Optional[datetime] = None,
) -> MergeResult:
    """
    Merge guest lines into the user cart.

    Matching SKUs have their quantities summed and clamped at max_quantity.
    New SKUs are appended while the user cart has fewer than max_items lines;
    the rest are dropped. Never raises for limits: the caller reports partial
    success through merged_count / dropped_skus.
    """
    result = MergeResult(cart=copy.deepcopy(user_cart))
    merged = result.cart

    for guest_item in guest_cart.items:
        index = _index_of(merged, guest_item.sku)
        if index >= 0:
            existing = merged.items[index]
            existing.quantity = min(existing.quantity + guest_item.quantity, max_quantity)
            result.merged_count += 1
        elif len(merged.items) < max_items:
            moved = copy.deepcopy(guest_item)
            moved.quantity = min(moved.quantity, max_quantity)
            merged.items.append(moved)
            result.merged_count += 1
        else:
            result.dropped_skus.append(guest_item.sku)

    _recalc_in_place(merged, now)
    return result
