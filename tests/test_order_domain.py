import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from storefront.core.exceptions import (
    InvalidPaymentStatusTransition,
    InvalidQuantity,
    InvalidStatusTransition,
)
from storefront.domain.order import (
    OrderLine,
    OrderTotals,
    ensure_payment_transition,
    ensure_status_transition,
    generate_order_number,
)
from storefront.models.order import OrderStatus, PaymentStatus


def test_order_line_computes_total():
    line = OrderLine(product_id=1, product_name="Gown", quantity=3, unit_price=Decimal("19.99"))

    assert line.total_price == Decimal("59.97")


def test_order_line_accepts_total_within_a_cent():
    line = OrderLine(product_id=1, product_name="Gown", quantity=3, unit_price="3.33", total_price="10.00")

    assert line.total_price == Decimal("10.00")


def test_order_line_rejects_inconsistent_total():
    with pytest.raises(ValueError):
        OrderLine(product_id=1, product_name="Gown", quantity=2, unit_price="5.00", total_price="12.00")


@pytest.mark.parametrize("quantity", [0, 1001, 2.5])
def test_order_line_quantity_bounds(quantity):
    with pytest.raises(InvalidQuantity):
        OrderLine(product_id=1, product_name="Gown", quantity=quantity, unit_price="5.00")


def test_order_line_requires_a_name():
    with pytest.raises(ValueError):
        OrderLine(product_id=1, product_name="", quantity=1, unit_price="5.00")


def test_order_total_is_sum_of_parts():
    lines = [
        OrderLine(product_id=1, product_name="Cap", quantity=2, unit_price="24.99"),
        OrderLine(product_id=2, product_name="Stole", quantity=1, unit_price="19.50"),
    ]

    totals = OrderTotals.for_lines(lines, tax_amount="5.56", shipping_amount="0", discount_amount="6.95")

    assert totals.subtotal == Decimal("69.48")
    assert totals.total_amount == Decimal("68.09")


def test_discount_cannot_exceed_order_value():
    with pytest.raises(ValueError):
        OrderTotals(subtotal=Decimal("10"), shipping_amount=Decimal("0"), discount_amount=Decimal("10.01"))


def test_order_number_format():
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    number = generate_order_number("GB", now=now)

    assert re.fullmatch(r"GB-\d{13}-[A-Z0-9]{9}", number)
    assert number.split("-")[1] == str(int(now.timestamp() * 1000))


@pytest.mark.parametrize(
    "current,requested",
    [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.PENDING, OrderStatus.CANCELLED),
        (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    ],
)
def test_allowed_status_transitions(current, requested):
    ensure_status_transition(current, requested, PaymentStatus.PENDING)


@pytest.mark.parametrize(
    "current,requested",
    [
        (OrderStatus.PENDING, OrderStatus.SHIPPED),
        (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
        (OrderStatus.CANCELLED, OrderStatus.PENDING),
        (OrderStatus.DELIVERED, OrderStatus.PENDING),
    ],
)
def test_rejected_status_transitions(current, requested):
    with pytest.raises(InvalidStatusTransition):
        ensure_status_transition(current, requested, PaymentStatus.PAID)


def test_refund_requires_paid_order():
    ensure_status_transition(OrderStatus.DELIVERED, OrderStatus.REFUNDED, PaymentStatus.PAID)
    ensure_status_transition(OrderStatus.COMPLETED, OrderStatus.REFUNDED, PaymentStatus.PAID)

    with pytest.raises(InvalidStatusTransition):
        ensure_status_transition(OrderStatus.DELIVERED, OrderStatus.REFUNDED, PaymentStatus.PENDING)


def test_payment_status_transitions():
    ensure_payment_transition(PaymentStatus.PENDING, PaymentStatus.PAID)
    ensure_payment_transition(PaymentStatus.PENDING, PaymentStatus.FAILED)
    ensure_payment_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)

    with pytest.raises(InvalidPaymentStatusTransition):
        ensure_payment_transition(PaymentStatus.FAILED, PaymentStatus.PAID)
    with pytest.raises(InvalidPaymentStatusTransition):
        ensure_payment_transition(PaymentStatus.PENDING, PaymentStatus.REFUNDED)
