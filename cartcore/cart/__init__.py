"""Cart package: models and the pure cart aggregate.

The orchestrating service lives in ``cartcore.cart.service``; it depends on
the storage layer, which itself imports the models from here.
"""
from .models import AddItemRequest, Cart, CartItem
from .aggregate import (
    MergeResult,
    add_item,
    is_guest,
    merge_guest_into_user,
    new_cart,
    recalc_totals,
    refresh_expiry,
    remove_item,
    update_quantity,
)

__all__ = [
    "AddItemRequest",
    "Cart",
    "CartItem",
    "MergeResult",
    "add_item",
    "is_guest",
    "merge_guest_into_user",
    "new_cart",
    "recalc_totals",
    "refresh_expiry",
    "remove_item",
    "update_quantity",
]
