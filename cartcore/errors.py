"""
Cart error taxonomy.

Every failure a caller can observe is a CartError subclass carrying a stable
code, the HTTP status it maps to and whether retrying may succeed.
"""

from typing import Any

# Messages shared between raise sites and tests
ERROR_CART_BUSY = "Cart is currently being modified, please try again"
ERROR_CART_NOT_FOUND = "Cart not found"
ERROR_INVALID_QUANTITY = "Quantity must be a positive integer"
ERROR_NEGATIVE_QUANTITY = "Quantity cannot be negative"
ERROR_STORAGE_UNAVAILABLE = "Cart storage unavailable"
ERROR_INVALID_USER_ID = "User id must be non-empty and must not contain ':'"


class CartError(Exception):
    """Base class for cart failures."""

    code: str = "CART_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class InvalidQuantityError(CartError):
    code = "INVALID_QUANTITY"
    status_code = 400


class InvalidUserIdError(CartError):
    """Cart owner id is empty or would collide with another key namespace."""

    code = "INVALID_USER_ID"
    status_code = 400


class LimitExceededError(CartError):
    """Max items per cart or max quantity per item exceeded."""

    code = "LIMIT_EXCEEDED"
    status_code = 400


class InvalidItemError(CartError):
    """Add-item request is missing fields or carries invalid values."""

    code = "INVALID_ITEM"
    status_code = 400


class ItemNotFoundError(CartError):
    code = "ITEM_NOT_FOUND"
    status_code = 404


class CartNotFoundError(CartError):
    code = "CART_NOT_FOUND"
    status_code = 404


class ProductNotFoundError(CartError):
    code = "PRODUCT_NOT_FOUND"
    status_code = 404


class InsufficientStockError(CartError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409


class CartBusyError(CartError):
    """The cart lock is held by another request."""

    code = "CART_BUSY"
    status_code = 409
    retryable = True


class StorageUnavailableError(CartError):
    """The storage backend could not be reached or answered unexpectedly."""

    code = "STORAGE_UNAVAILABLE"
    status_code = 503
    retryable = True


class PublishFailedError(CartError):
    """Event could not be handed to the broker. Never leaves the publisher."""

    code = "PUBLISH_FAILED"
    status_code = 502
    retryable = True


class ConfigError(ValueError):
    """Invalid configuration detected at startup."""
