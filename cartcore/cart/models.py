"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cartcore.money import to_decimal, multiply


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_instant(value: Any) -> datetime:
    """Accept ISO-8601 strings, epoch milliseconds or datetimes."""
    if isinstance(value, datetime):
        instant = value
    elif isinstance(value, (int, float)):
        instant = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str) and value:
        instant = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant


@dataclass
class CartItem:
    """Single line in the cart, unique by SKU."""
    product_id: str
    product_name: str
    sku: str
    price: Decimal
    quantity: int
    subtotal: Decimal = Decimal("0")
    image_url: Optional[str] = None
    category: Optional[str] = None
    selected_color: Optional[str] = None
    selected_size: Optional[str] = None
    added_at: Optional[datetime] = None

    def __post_init__(self):
        self.price = to_decimal(self.price)
        self.subtotal = multiply(self.price, self.quantity)
        if self.added_at is None:
            self.added_at = utcnow()

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape."""
        data = {
            "productId": self.product_id,
            "productName": self.product_name,
            "sku": self.sku,
            "price": str(self.price),
            "quantity": self.quantity,
            "subtotal": str(self.subtotal),
            "addedAt": self.added_at.isoformat(),
        }
        optional = {
            "imageUrl": self.image_url,
            "category": self.category,
            "selectedColor": self.selected_color,
            "selectedSize": self.selected_size,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        """Create from the persisted JSON shape."""
        return cls(
            product_id=data["productId"],
            product_name=data.get("productName", ""),
            sku=data["sku"],
            price=to_decimal(data["price"]),
            quantity=int(data["quantity"]),
            image_url=data.get("imageUrl"),
            category=data.get("category"),
            selected_color=data.get("selectedColor"),
            selected_size=data.get("selectedSize"),
            added_at=_parse_instant(data["addedAt"]) if data.get("addedAt") else None,
        )


@dataclass
class Cart:
    """Shopping cart for one user or guest."""
    user_id: str
    items: List[CartItem] = field(default_factory=list)
    total_price: Decimal = Decimal("0")
    total_items: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def __post_init__(self):
        now = utcnow()
        if self.created_at is None:
            self.created_at = now
        if self.updated_at is None:
            self.updated_at = now
        if self.expires_at is None:
            self.expires_at = now
        self.total_price = to_decimal(self.total_price)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_item(self, sku: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.sku == sku), None)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict:
        """Convert to dictionary for the state store."""
        return {
            "userId": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "totalPrice": str(self.total_price),
            "totalItems": self.total_items,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cart":
        """Create from dictionary. Totals are taken as stored."""
        items = [CartItem.from_dict(item) for item in data.get("items", [])]
        return cls(
            user_id=data["userId"],
            items=items,
            total_price=to_decimal(data.get("totalPrice", "0")),
            total_items=int(data.get("totalItems", 0)),
            created_at=_parse_instant(data["createdAt"]),
            updated_at=_parse_instant(data["updatedAt"]),
            expires_at=_parse_instant(data["expiresAt"]),
        )


class AddItemRequest(BaseModel):
    """Incoming add-to-cart payload (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    product_id: str = Field(min_length=1)
    product_name: str | None = None
    sku: str | None = None
    price: Decimal | None = Field(default=None, ge=0)
    quantity: int = 1
    image_url: str | None = None
    category: str | None = None
    selected_color: str | None = None
    selected_size: str | None = None

    @property
    def is_complete(self) -> bool:
        """True when the client sent everything needed to build the line."""
        return bool(self.sku) and bool(self.product_name) and self.price is not None

    def to_item(self) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            product_name=self.product_name or "",
            sku=self.sku or "",
            price=self.price if self.price is not None else Decimal("0"),
            quantity=self.quantity,
            image_url=self.image_url,
            category=self.category,
            selected_color=self.selected_color,
            selected_size=self.selected_size,
        )
