"""Key naming and TTL constants for cart state."""

from cartcore.cart.aggregate import GUEST_PREFIX, is_guest
from cartcore.errors import ERROR_INVALID_USER_ID, InvalidUserIdError

KEY_SEPARATOR = ":"


def validate_user_id(user_id: str) -> str:
    """
    Reject ids that cannot be mapped to a key of their own.

    ``:`` separates key segments, so an id like ``guest:abc`` would land on
    the guest namespace (``cart:guest:abc``) of ``guest-abc``.

    Raises:
        InvalidUserIdError: If the id is empty or contains ``:``
    """
    if not user_id or KEY_SEPARATOR in user_id:
        raise InvalidUserIdError(ERROR_INVALID_USER_ID, user_id=user_id)
    return user_id


class CartKeys:
    """Key prefixes for cart data in the state backend."""

    CART = "cart:"  # cart:{user_id}
    GUEST_CART = "cart:guest:"  # cart:guest:{guest_id}
    LOCK = "lock:cart:"  # lock:cart:{user_id}

    @staticmethod
    def cart_key(user_id: str) -> str:
        validate_user_id(user_id)
        if is_guest(user_id):
            return f"{CartKeys.GUEST_CART}{user_id[len(GUEST_PREFIX):]}"
        return f"{CartKeys.CART}{user_id}"

    @staticmethod
    def lock_key(user_id: str) -> str:
        validate_user_id(user_id)
        return f"{CartKeys.LOCK}{user_id}"


class TTL:
    """Time-to-live constants (seconds)."""

    MIN_CART = 60  # floor to avoid near-zero TTL races
    LOCK = 30


def effective_cart_ttl(ttl: int) -> int:
    """Clamp a cart TTL to the minimum floor."""
    return max(int(ttl), TTL.MIN_CART)
