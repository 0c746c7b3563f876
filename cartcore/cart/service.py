"""
Cart service.

Orchestrates every mutating operation as:

    acquire lock -> read -> mutate -> persist -> release lock -> publish

Events are dispatched on a background task after the lock is released, so a
slow or failing broker never delays or rolls back a cart write.
"""
import uuid
from datetime import datetime
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from cartcore.config import Settings
from cartcore.errors import (
    ERROR_CART_NOT_FOUND,
    ERROR_INVALID_QUANTITY,
    ERROR_NEGATIVE_QUANTITY,
    CartNotFoundError,
    InsufficientStockError,
    InvalidItemError,
    InvalidQuantityError,
    LimitExceededError,
    ProductNotFoundError,
)
from cartcore.events import cart_events
from cartcore.events.base import EventPublisher
from cartcore.events.cart_events import CartTopics
from cartcore.lock import DistributedLock
from cartcore.logging import get_logger, sanitize_id_for_logging
from cartcore.storage.base import StorageProvider
from cartcore.storage.keys import CartKeys, validate_user_id
from . import aggregate
from .catalog import InventoryChecker, ProductLookup, variant_sku
from .models import AddItemRequest, Cart, CartItem, utcnow

logger = get_logger(__name__)

Clock = Callable[[], datetime]


class CartService:
    """
    Cart operations on top of pluggable storage, locking and events.

    Features:
    - Per-user advisory lock around every mutation
    - Sliding expiry: each write pushes expires_at out by the cart TTL
    - Guest carts (``guest-`` ids) get the shorter guest TTL
    - Guest-to-user transfer with clamped merge
    """

    def __init__(
        self,
        storage: StorageProvider,
        lock: DistributedLock,
        publisher: EventPublisher,
        settings: Settings,
        products: Optional[ProductLookup] = None,
        inventory: Optional[InventoryChecker] = None,
        clock: Clock = utcnow,
    ):
        self.storage = storage
        self.lock = lock
        self.publisher = publisher
        self.settings = settings
        self.products = products
        self.inventory = inventory
        self._clock = clock

    @classmethod
    def from_backends(
        cls,
        backends: Any,
        products: Optional[ProductLookup] = None,
        inventory: Optional[InventoryChecker] = None,
    ) -> "CartService":
        """Build a service from a started CartBackends bundle."""
        return cls(
            storage=backends.storage,
            lock=backends.lock,
            publisher=backends.publisher,
            settings=backends.settings,
            products=products,
            inventory=inventory,
        )

    # ==================== HELPERS ====================

    def _ttl(self, user_id: str) -> int:
        return self.settings.ttl_for(aggregate.is_guest(user_id))

    async def _load(self, user_id: str) -> Optional[Cart]:
        return await self.storage.get(CartKeys.cart_key(user_id))

    async def _persist(self, cart: Cart, ttl: int, now: datetime) -> Cart:
        cart = aggregate.refresh_expiry(cart, ttl, now)
        await self.storage.save(cart, ttl)
        return cart

    def _check_quantity(self, sku: Optional[str], quantity: int, allow_zero: bool = False) -> None:
        """Reject out-of-range quantities before any lookup, lock or read."""
        if quantity < 0 or (quantity == 0 and not allow_zero):
            message = ERROR_NEGATIVE_QUANTITY if allow_zero else ERROR_INVALID_QUANTITY
            raise InvalidQuantityError(message, sku=sku)
        if quantity > self.settings.max_item_quantity:
            raise LimitExceededError(
                f"Maximum quantity per item ({self.settings.max_item_quantity}) exceeded",
                sku=sku,
                limit=self.settings.max_item_quantity,
            )

    def _publish(self, topic: str, payload: dict, correlation_id: Optional[str]) -> None:
        self.publisher.dispatch(topic, payload, correlation_id or str(uuid.uuid4()))

    # ==================== READ ====================

    async def get_cart(self, user_id: str) -> Cart:
        """Stored cart, or a fresh empty cart that is not written back."""
        cart = await self._load(user_id)
        if cart is None:
            logger.debug(f"No stored cart for {sanitize_id_for_logging(user_id)}, returning empty cart")
            return aggregate.new_cart(user_id, self._ttl(user_id), self._clock())
        return cart

    # ==================== ADD ====================

    async def _resolve_item(self, request: AddItemRequest) -> CartItem:
        """Build the cart line, consulting the catalog when the request is incomplete."""
        if request.is_complete:
            logger.debug(f"Using client-provided SKU {request.sku}, catalog lookup skipped")
            return request.to_item()

        if self.products is None:
            raise ProductNotFoundError(
                f"Product not found: {request.product_id}", product_id=request.product_id
            )
        try:
            product = await self.products.get_product(request.product_id)
        except Exception as e:
            logger.error(f"Failed to get product {request.product_id}: {e}")
            raise ProductNotFoundError(
                f"Product not found: {request.product_id}", product_id=request.product_id
            ) from e

        if product is None or not product.id:
            raise ProductNotFoundError(
                f"Product not found: {request.product_id}", product_id=request.product_id
            )
        if product.is_active is False:
            raise InvalidItemError("Product is not available", product_id=product.id)

        sku = variant_sku(product.sku, request.selected_color, request.selected_size)
        logger.info(f"Generated variant SKU {sku} for product {product.id}")
        return CartItem(
            product_id=product.id,
            product_name=product.name,
            sku=sku,
            price=product.price,
            quantity=request.quantity,
            image_url=product.image_url or request.image_url,
            category=product.category,
            selected_color=request.selected_color,
            selected_size=request.selected_size,
        )

    async def _check_stock(self, sku: str, quantity: int) -> None:
        if self.inventory is None:
            return
        try:
            available = await self.inventory.check_availability(sku, quantity)
        except Exception as e:
            logger.warning(f"Failed to check inventory for SKU {sku}, allowing operation: {e}")
            return
        if not available:
            logger.warning(f"Insufficient stock for SKU {sku}, quantity {quantity}")
            raise InsufficientStockError("Insufficient stock for product", sku=sku, quantity=quantity)

    async def add_item(
        self,
        user_id: str,
        request: Union[AddItemRequest, dict],
        is_guest: Optional[bool] = None,
        correlation_id: Optional[str] = None,
    ) -> Cart:
        """
        Add an item to the user's cart.

        Args:
            user_id: Cart owner (``guest-...`` for guests)
            request: AddItemRequest or its camelCase dict form
            is_guest: Override guest detection (defaults to the id prefix)
            correlation_id: Propagated to the emitted event

        Raises:
            InvalidItemError, ProductNotFoundError, InsufficientStockError,
            InvalidQuantityError, LimitExceededError, CartBusyError,
            StorageUnavailableError
        """
        if not isinstance(request, AddItemRequest):
            try:
                request = AddItemRequest.model_validate(request)
            except ValidationError as e:
                raise InvalidItemError(
                    "Invalid add-item request",
                    errors=e.errors(include_url=False, include_context=False, include_input=False),
                ) from e

        validate_user_id(user_id)
        self._check_quantity(request.sku, request.quantity)
        item = await self._resolve_item(request)
        await self._check_stock(item.sku, item.quantity)

        guest = aggregate.is_guest(user_id) if is_guest is None else is_guest
        ttl = self.settings.ttl_for(guest)

        async with self.lock.hold(user_id):
            now = self._clock()
            cart = await self._load(user_id) or aggregate.new_cart(user_id, ttl, now)
            cart = aggregate.add_item(
                cart,
                item,
                max_items=self.settings.max_items,
                max_quantity=self.settings.max_item_quantity,
                now=now,
            )
            cart = await self._persist(cart, ttl, now)

        logger.info(
            f"Item added to cart: user={sanitize_id_for_logging(user_id)}, "
            f"sku={item.sku}, quantity={item.quantity}"
        )
        stored = cart.find_item(item.sku)
        self._publish(CartTopics.ITEM_ADDED, cart_events.item_added(cart, stored, now), correlation_id)
        return cart

    # ==================== UPDATE / REMOVE ====================

    async def update_item_quantity(
        self,
        user_id: str,
        sku: str,
        quantity: int,
        correlation_id: Optional[str] = None,
    ) -> Cart:
        """
        Set an item's quantity. Zero removes the line.

        Raises:
            CartNotFoundError: If the user has no stored cart
            ItemNotFoundError, InvalidQuantityError, LimitExceededError
        """
        self._check_quantity(sku, quantity, allow_zero=True)
        async with self.lock.hold(user_id):
            now = self._clock()
            cart = await self._load(user_id)
            if cart is None:
                raise CartNotFoundError(ERROR_CART_NOT_FOUND, user_id=user_id)

            previous = cart.find_item(sku)
            cart = aggregate.update_quantity(
                cart, sku, quantity, max_quantity=self.settings.max_item_quantity, now=now
            )
            cart = await self._persist(cart, self._ttl(user_id), now)

        logger.info(
            f"Cart item updated: user={sanitize_id_for_logging(user_id)}, "
            f"sku={sku}, quantity {previous.quantity} -> {quantity}"
        )
        if quantity == 0:
            payload = cart_events.item_removed(cart, previous, now)
            self._publish(CartTopics.ITEM_REMOVED, payload, correlation_id)
        else:
            payload = cart_events.item_updated(cart, cart.find_item(sku), previous.quantity, now)
            self._publish(CartTopics.ITEM_UPDATED, payload, correlation_id)
        return cart

    async def remove_item(self, user_id: str, sku: str, correlation_id: Optional[str] = None) -> Cart:
        """Remove a line from the cart."""
        async with self.lock.hold(user_id):
            now = self._clock()
            cart = await self._load(user_id)
            if cart is None:
                raise CartNotFoundError(ERROR_CART_NOT_FOUND, user_id=user_id)

            removed = cart.find_item(sku)
            cart = aggregate.remove_item(cart, sku, now=now)
            cart = await self._persist(cart, self._ttl(user_id), now)

        logger.info(f"Item removed from cart: user={sanitize_id_for_logging(user_id)}, sku={sku}")
        self._publish(CartTopics.ITEM_REMOVED, cart_events.item_removed(cart, removed, now), correlation_id)
        return cart

    # ==================== CLEAR / TRANSFER ====================

    async def clear_cart(self, user_id: str, correlation_id: Optional[str] = None) -> None:
        """Delete the stored cart. Missing carts are cleared trivially."""
        async with self.lock.hold(user_id):
            now = self._clock()
            previous = await self._load(user_id)
            await self.storage.delete(CartKeys.cart_key(user_id))

        if previous is None:
            previous = aggregate.new_cart(user_id, self._ttl(user_id), now)
        logger.info(
            f"Cart cleared: user={sanitize_id_for_logging(user_id)}, "
            f"clearedItemCount={len(previous.items)}"
        )
        self._publish(CartTopics.CLEARED, cart_events.cart_cleared(previous, now), correlation_id)

    async def transfer_cart(
        self,
        guest_id: str,
        user_id: str,
        correlation_id: Optional[str] = None,
    ) -> Cart:
        """
        Merge a guest cart into an authenticated user's cart.

        Matching SKUs have quantities summed (clamped to the per-item limit);
        new SKUs are added while the item limit allows, the rest dropped.
        The user cart is saved with the authenticated TTL and the guest cart
        deleted. An empty or missing guest cart changes nothing, and so does
        transferring a cart onto its own owner.
        """
        validate_user_id(guest_id)
        validate_user_id(user_id)
        if guest_id == user_id:
            logger.debug(f"Transfer onto the same cart skipped: {sanitize_id_for_logging(user_id)}")
            return await self.get_cart(user_id)

        guest_cart = await self._load(guest_id)
        if guest_cart is None or guest_cart.is_empty:
            logger.debug(f"No guest cart to transfer: {sanitize_id_for_logging(guest_id)}")
            return await self.get_cart(user_id)

        async with self.lock.hold(guest_id, user_id):
            now = self._clock()
            # Re-read under the lock: the guest cart may have changed meanwhile
            guest_cart = await self._load(guest_id)
            user_cart = await self._load(user_id)
            if guest_cart is None or guest_cart.is_empty:
                return user_cart or aggregate.new_cart(user_id, self.settings.cart_ttl, now)

            if user_cart is None:
                user_cart = aggregate.new_cart(user_id, self.settings.cart_ttl, now)
            result = aggregate.merge_guest_into_user(
                guest_cart,
                user_cart,
                max_items=self.settings.max_items,
                max_quantity=self.settings.max_item_quantity,
                now=now,
            )
            cart = await self._persist(result.cart, self.settings.cart_ttl, now)
            await self.storage.delete(CartKeys.cart_key(guest_id))

        if result.dropped_skus:
            logger.warning(
                f"Cart transfer dropped {len(result.dropped_skus)} item(s) over the item limit: "
                f"{', '.join(result.dropped_skus)}"
            )
        logger.info(
            f"Cart transferred: guest={sanitize_id_for_logging(guest_id)}, "
            f"user={sanitize_id_for_logging(user_id)}, items={result.merged_count}"
        )
        payload = cart_events.cart_transferred(guest_id, user_id, result.merged_count, cart, now)
        self._publish(CartTopics.TRANSFERRED, payload, correlation_id)
        return cart
