import random
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from storefront.core.exceptions import (
    InvalidPaymentStatusTransition,
    InvalidQuantity,
    InvalidStatusTransition,
)
from storefront.domain.cart import MAX_LINE_QUANTITY
from storefront.models.order import OrderStatus, PaymentStatus
from storefront.utils.money import Number, money_equal, round_money, to_decimal

ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

STATUS_DESCRIPTIONS = {
    OrderStatus.PENDING: "Order placed and awaiting confirmation",
    OrderStatus.CONFIRMED: "Order confirmed and being prepared",
    OrderStatus.PROCESSING: "Order is being processed",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.DELIVERED: "Order has been delivered",
    OrderStatus.COMPLETED: "Order has been completed",
    OrderStatus.CANCELLED: "Order has been cancelled",
    OrderStatus.REFUNDED: "Order has been refunded",
}


def ensure_status_transition(current: OrderStatus, requested: OrderStatus, payment_status: PaymentStatus) -> None:
    if requested not in ORDER_STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition(current.value, requested.value)
    if requested == OrderStatus.REFUNDED and payment_status != PaymentStatus.PAID:
        raise InvalidStatusTransition(current.value, requested.value)


def ensure_payment_transition(current: PaymentStatus, requested: PaymentStatus) -> None:
    if requested not in PAYMENT_STATUS_TRANSITIONS.get(current, frozenset()):
        raise InvalidPaymentStatusTransition(current.value, requested.value)


def describe_status(status: OrderStatus) -> str:
    return STATUS_DESCRIPTIONS.get(status, "Status updated")


def generate_order_number(prefix: str, now: Optional[datetime] = None) -> str:
    """``<prefix>-<epoch millis>-<9 random upper-case alphanumerics>``"""
    now = now or datetime.now(timezone.utc)
    timestamp = int(now.timestamp() * 1000)
    random_part = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"{prefix}-{timestamp}-{random_part}"


@dataclass
class OrderLine:
    """Immutable-once-persisted snapshot of one purchased product."""

    product_id: Optional[int]
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Optional[Decimal] = None
    product_sku: Optional[str] = None
    product_slug: Optional[str] = None
    product_image_url: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidQuantity("Quantity must be a whole number")
        if self.quantity <= 0:
            raise InvalidQuantity("Quantity must be greater than 0")
        if self.quantity > MAX_LINE_QUANTITY:
            raise InvalidQuantity(f"Quantity cannot exceed {MAX_LINE_QUANTITY}")
        if not self.product_name:
            raise ValueError("Product name is required")

        self.unit_price = round_money(self.unit_price)
        if self.unit_price < 0:
            raise ValueError("Unit price must be greater than or equal to 0")

        expected = round_money(self.unit_price * self.quantity)
        if self.total_price is None:
            self.total_price = expected
        else:
            self.total_price = round_money(self.total_price)
            if not money_equal(self.total_price, expected):
                raise ValueError("Total price does not match quantity x unit price")

    def to_row(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "product_slug": self.product_slug,
            "product_image_url": self.product_image_url,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }


@dataclass
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal = Decimal("0")
    shipping_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ("subtotal", "tax_amount", "shipping_amount", "discount_amount"):
            value = round_money(getattr(self, name))
            if value < 0:
                raise ValueError(f"{name} cannot be negative")
            setattr(self, name, value)
        if self.discount_amount > self.subtotal + self.shipping_amount:
            raise ValueError("Discount cannot exceed the order value")

    @property
    def total_amount(self) -> Decimal:
        return self.subtotal + self.tax_amount + self.shipping_amount - self.discount_amount

    @classmethod
    def for_lines(
        cls,
        lines: List[OrderLine],
        tax_amount: Number = 0,
        shipping_amount: Number = 0,
        discount_amount: Number = 0,
    ) -> "OrderTotals":
        subtotal = sum((line.total_price for line in lines), Decimal("0"))
        return cls(
            subtotal=subtotal,
            tax_amount=to_decimal(tax_amount),
            shipping_amount=to_decimal(shipping_amount),
            discount_amount=to_decimal(discount_amount),
        )

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax_amount": self.tax_amount,
            "shipping_amount": self.shipping_amount,
            "discount_amount": self.discount_amount,
            "total_amount": self.total_amount,
        }


@dataclass
class OrderDraft:
    """Everything the Order Store needs to persist one order."""

    lines: List[OrderLine]
    totals: OrderTotals
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    currency: str = "USD"
    promo_code: Optional[str] = None
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    customer_info: Optional[dict] = None
    notes: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
