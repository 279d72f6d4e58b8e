from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from storefront.core.exceptions import IdentityRequired, InvalidQuantity
from storefront.domain.catalog import ProductSnapshot
from storefront.utils.money import Number, round_money, to_decimal

DEFAULT_TAX_RATE = Decimal("0.08")
DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal("75")
DEFAULT_FLAT_SHIPPING_FEE = Decimal("9.99")
MAX_LINE_QUANTITY = 1000


def ensure_quantity(quantity, minimum: int = 1) -> int:
    """Reject non-integers and anything below ``minimum``."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity("Quantity must be a whole number")
    if quantity < minimum:
        raise InvalidQuantity(f"Quantity must be at least {minimum}")
    return quantity


def ensure_line_limit(quantity: int) -> int:
    if quantity > MAX_LINE_QUANTITY:
        raise InvalidQuantity(f"Quantity cannot exceed {MAX_LINE_QUANTITY}")
    return quantity


@dataclass
class CartLine:
    product_id: int
    quantity: int
    price: Decimal
    id: Optional[int] = None
    cart_id: Optional[int] = None
    product: Optional[ProductSnapshot] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        ensure_quantity(self.quantity)
        self.price = to_decimal(self.price)
        if self.price < 0:
            raise ValueError("Price cannot be negative")

    @property
    def total_price(self) -> Decimal:
        return self.price * self.quantity

    def update_quantity(self, quantity: int) -> None:
        self.quantity = ensure_line_limit(ensure_quantity(quantity))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "product": self.product.to_dict() if self.product else None,
            "quantity": self.quantity,
            "price": round_money(self.price),
            "total_price": round_money(self.total_price),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class CartSummary:
    item_count: int
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    free_shipping_eligible: bool
    free_shipping_remaining: Decimal

    def to_dict(self) -> dict:
        return {
            "item_count": self.item_count,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
            "free_shipping_eligible": self.free_shipping_eligible,
            "free_shipping_remaining": self.free_shipping_remaining,
        }


@dataclass
class CartValidation:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


@dataclass
class CartAggregate:
    """A shopper's in-progress cart.

    Totals are always computed from the price captured on each line when it was
    added, never from the live catalog price.
    """

    id: Optional[int] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    items: List[CartLine] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.user_id and not self.session_id:
            raise IdentityRequired()
        if self.user_id and self.session_id:
            raise ValueError("A cart is owned by a user or a session, not both")

    def find_item(self, product_id: int) -> Optional[CartLine]:
        return next((item for item in self.items if item.product_id == product_id), None)

    def add_item(self, product: ProductSnapshot, quantity: int = 1, price: Optional[Number] = None) -> CartLine:
        ensure_line_limit(ensure_quantity(quantity))
        existing = self.find_item(product.id)
        if existing:
            existing.update_quantity(existing.quantity + quantity)
            return existing

        line = CartLine(
            cart_id=self.id,
            product_id=product.id,
            product=product,
            quantity=quantity,
            price=product.price if price is None else price,
        )
        self.items.append(line)
        return line

    def remove_item(self, product_id: int) -> None:
        self.items = [item for item in self.items if item.product_id != product_id]

    def update_item_quantity(self, product_id: int, quantity: int) -> None:
        item = self.find_item(product_id)
        if item is None:
            return
        if quantity <= 0:
            self.remove_item(product_id)
        else:
            item.update_quantity(quantity)

    def clear(self) -> None:
        self.items = []

    def is_empty(self) -> bool:
        return not self.items

    def get_total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def get_subtotal(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))

    def calculate_tax(self, rate: Number = DEFAULT_TAX_RATE) -> Decimal:
        return self.get_subtotal() * to_decimal(rate)

    def calculate_shipping(
        self,
        free_threshold: Number = DEFAULT_FREE_SHIPPING_THRESHOLD,
        flat_fee: Number = DEFAULT_FLAT_SHIPPING_FEE,
    ) -> Decimal:
        if self.get_subtotal() >= to_decimal(free_threshold):
            return Decimal("0")
        return to_decimal(flat_fee)

    def get_total(
        self,
        tax_rate: Number = DEFAULT_TAX_RATE,
        free_threshold: Number = DEFAULT_FREE_SHIPPING_THRESHOLD,
        flat_fee: Number = DEFAULT_FLAT_SHIPPING_FEE,
    ) -> Decimal:
        return self.get_subtotal() + self.calculate_tax(tax_rate) + self.calculate_shipping(free_threshold, flat_fee)

    def get_summary(
        self,
        tax_rate: Number = DEFAULT_TAX_RATE,
        free_threshold: Number = DEFAULT_FREE_SHIPPING_THRESHOLD,
        flat_fee: Number = DEFAULT_FLAT_SHIPPING_FEE,
    ) -> CartSummary:
        subtotal = self.get_subtotal()
        tax = self.calculate_tax(tax_rate)
        shipping = self.calculate_shipping(free_threshold, flat_fee)
        remaining = to_decimal(free_threshold) - subtotal if shipping > 0 else Decimal("0")

        return CartSummary(
            item_count=self.get_total_items(),
            subtotal=round_money(subtotal),
            tax=round_money(tax),
            shipping=round_money(shipping),
            total=round_money(subtotal + tax + shipping),
            free_shipping_eligible=shipping == 0,
            free_shipping_remaining=round_money(remaining),
        )

    def validate(self) -> CartValidation:
        """Check every line against the product snapshot attached to it.

        Never raises for business-rule problems; they are collected as errors.
        """
        errors = []
        if self.is_empty():
            errors.append("Cart is empty")

        for item in self.items:
            product = item.product
            if product is None:
                errors.append(f"Product not found for item {item.product_id}")
            elif not product.is_active:
                errors.append(f"{product.name} is no longer available")
            elif not product.is_in_stock():
                errors.append(f"{product.name} is out of stock")
            elif not product.can_purchase(item.quantity):
                errors.append(f"Insufficient stock for {product.name}. Available: {product.stock_count}")
            if item.quantity > MAX_LINE_QUANTITY:
                name = product.name if product else f"item {item.product_id}"
                errors.append(f"Quantity of {name} cannot exceed {MAX_LINE_QUANTITY}")

        return CartValidation(is_valid=not errors, errors=errors)

    def to_dict(self, **summary_options) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "items": [item.to_dict() for item in self.items],
            "summary": self.get_summary(**summary_options).to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_model(cls, cart, products: Optional[Dict[int, Optional[ProductSnapshot]]] = None) -> "CartAggregate":
        products = products or {}
        return cls(
            id=cart.id,
            user_id=cart.user_id,
            session_id=cart.session_id,
            items=[
                CartLine(
                    id=item.id,
                    cart_id=item.cart_id,
                    product_id=item.product_id,
                    product=products.get(item.product_id),
                    quantity=item.quantity,
                    price=item.price,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                )
                for item in cart.items
            ],
            created_at=cart.created_at,
            updated_at=cart.updated_at,
        )
