from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from storefront.utils.money import to_decimal


@dataclass(frozen=True)
class ProductSnapshot:
    """Current catalog state of one product, as seen by the cart and order core."""

    id: int
    name: str
    price: Decimal
    is_active: bool
    stock_count: int
    slug: Optional[str] = None
    sku: Optional[str] = None
    image_url: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "price", to_decimal(self.price))
        object.__setattr__(self, "stock_count", int(self.stock_count or 0))

    def is_in_stock(self) -> bool:
        return self.is_active and self.stock_count > 0

    def can_purchase(self, quantity: int = 1) -> bool:
        return self.is_active and self.stock_count >= quantity

    @classmethod
    def from_model(cls, product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            name=product.name,
            price=product.price,
            is_active=bool(product.is_active),
            stock_count=product.stock_count,
            slug=product.slug,
            sku=product.sku,
            image_url=product.image_url,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "sku": self.sku,
            "price": self.price,
            "is_active": self.is_active,
            "stock_count": self.stock_count,
            "image_url": self.image_url,
        }


class CatalogReader(Protocol):
    """Read port onto the product catalog."""

    def find_product_by_id(self, product_id: int) -> Optional[ProductSnapshot]:
        ...
