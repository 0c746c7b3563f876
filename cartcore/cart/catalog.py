"""
Catalog collaborators used when adding items.

The cart core does not talk to the product or inventory services itself;
callers plug in objects satisfying these protocols.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Protocol, runtime_checkable

from cartcore.money import to_decimal


@dataclass
class ProductInfo:
    """Product as reported by the product catalog."""
    id: str
    name: str
    sku: Optional[str]
    price: Decimal
    image_url: Optional[str] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None
    stock_qty: Optional[int] = None

    def __post_init__(self):
        self.price = to_decimal(self.price)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProductInfo":
        """Build from a product-service response (mixed key styles)."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            sku=data.get("sku"),
            price=to_decimal(data.get("price")),
            image_url=data.get("imageUrl") or data.get("image_url"),
            category=data.get("category"),
            is_active=data.get("is_active", data.get("isActive")),
            stock_qty=data.get("stockQty"),
        )


@runtime_checkable
class ProductLookup(Protocol):
    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        ...


@runtime_checkable
class InventoryChecker(Protocol):
    async def check_availability(self, sku: str, quantity: int) -> bool:
        ...


def variant_sku(base_sku: Optional[str], color: Optional[str] = None, size: Optional[str] = None) -> str:
    """
    Build the SKU of a product variant.

    Example: variant_sku("TSHIRT-001", "red", "m") -> "TSHIRT-001-RED-M"
    """
    sku = base_sku or "UNKNOWN"
    if color:
        sku = f"{sku}-{color.upper()}"
    if size:
        sku = f"{sku}-{size.upper()}"
    return sku
