from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from storefront.core.exceptions import (
    CartItemNotFound,
    IdentityRequired,
    InsufficientStock,
    InvalidQuantity,
    MinimumOrderNotMet,
    ProductInactive,
    ProductNotFound,
)
from storefront.models.cart import Cart, CartItem
from storefront.services.cart_service import CartService, resolve_identity


def test_resolve_identity_prefers_user():
    assert resolve_identity("7", "guest-1") == ("7", None)
    assert resolve_identity(None, "guest-1") == (None, "guest-1")

    with pytest.raises(IdentityRequired):
        resolve_identity(None, None)


def test_get_or_create_cart_is_idempotent(db_session: Session):
    service = CartService(db_session)

    first = service.get_or_create_cart(session_id="guest-1")
    second = service.get_or_create_cart(session_id="guest-1")
    user_first = service.get_or_create_cart(user_id="7", session_id="guest-1")
    user_second = service.get_or_create_cart(user_id="7")

    assert first.id == second.id
    assert user_first.id == user_second.id
    assert user_first.id != first.id
    assert db_session.query(Cart).count() == 2


def test_add_then_remove_scenario(db_session: Session, make_product):
    product = make_product(price="10.00")
    service = CartService(db_session)

    cart = service.add_item_to_cart(None, "guest-1", product.id, 2)
    assert cart.get_subtotal() == Decimal("20.00")

    cart = service.remove_item_from_cart(None, "guest-1", product.id)
    assert cart.is_empty() is True


def test_adding_twice_merges_into_one_row(db_session: Session, make_product):
    product = make_product(stock_count=10)
    service = CartService(db_session)

    service.add_item_to_cart("7", None, product.id, 2)
    cart = service.add_item_to_cart("7", None, product.id, 3)

    assert [(item.product_id, item.quantity) for item in cart.items] == [(product.id, 5)]
    assert db_session.query(CartItem).count() == 1


def test_price_snapshot_survives_catalog_change(db_session: Session, make_product):
    product = make_product(price="10.00")
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 2)

    product.price = Decimal("12.50")
    db_session.commit()

    cart = service.get_cart(session_id="guest-1")
    assert cart.get_subtotal() == Decimal("20.00")
    assert cart.items[0].product.price == Decimal("12.50")


def test_insufficient_stock_mentions_available_count(db_session: Session, make_product):
    product = make_product(stock_count=1)
    service = CartService(db_session)

    with pytest.raises(InsufficientStock) as exc_info:
        service.add_item_to_cart(None, "guest-1", product.id, 2)

    assert "Available: 1" in exc_info.value.message
    assert service.get_item_quantity(None, "guest-1", product.id) == 0


def test_stock_check_counts_quantity_already_in_cart(db_session: Session, make_product):
    product = make_product(stock_count=3)
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 2)

    with pytest.raises(InsufficientStock):
        service.add_item_to_cart(None, "guest-1", product.id, 2)

    assert service.get_item_quantity(None, "guest-1", product.id) == 2


def test_add_rejects_missing_and_inactive_products(db_session: Session, make_product):
    inactive = make_product(is_active=False)
    service = CartService(db_session)

    with pytest.raises(ProductNotFound):
        service.add_item_to_cart(None, "guest-1", 9999, 1)
    with pytest.raises(ProductInactive):
        service.add_item_to_cart(None, "guest-1", inactive.id, 1)


def test_add_requires_identity(db_session: Session, make_product):
    product = make_product()

    with pytest.raises(IdentityRequired):
        CartService(db_session).add_item_to_cart(None, None, product.id, 1)


def test_update_quantity_rules(db_session: Session, make_product):
    product = make_product(stock_count=5)
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 1)

    cart = service.update_item_quantity(None, "guest-1", product.id, 4)
    assert cart.items[0].quantity == 4

    with pytest.raises(InvalidQuantity):
        service.update_item_quantity(None, "guest-1", product.id, -1)
    with pytest.raises(InsufficientStock):
        service.update_item_quantity(None, "guest-1", product.id, 6)

    cart = service.update_item_quantity(None, "guest-1", product.id, 0)
    assert cart.is_empty()


def test_update_quantity_of_item_not_in_cart(db_session: Session, make_product):
    product = make_product()
    service = CartService(db_session)

    with pytest.raises(CartItemNotFound):
        service.update_item_quantity(None, "guest-1", product.id, 2)


def test_clear_cart(db_session: Session, make_product):
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", make_product().id, 1)
    service.add_item_to_cart(None, "guest-1", make_product().id, 1)

    cart = service.clear_cart(session_id="guest-1")

    assert cart.is_empty()
    assert db_session.query(CartItem).count() == 0


def test_validate_cart_corrects_price_drift(db_session: Session, make_product):
    product = make_product(price="10.00", name="Honor Stole")
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 1)

    product.price = Decimal("11.00")
    db_session.commit()

    result = service.validate_cart(session_id="guest-1")

    assert result.is_valid is True
    assert result.warnings == ["Price of Honor Stole has changed from $10.00 to $11.00"]
    assert service.get_cart(session_id="guest-1").get_subtotal() == Decimal("11.00")


def test_validate_cart_collects_errors(db_session: Session, make_product):
    product = make_product(stock_count=5, name="Diploma Frame")
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 3)

    product.stock_count = 2
    db_session.commit()

    result = service.validate_cart(session_id="guest-1")

    assert result.is_valid is False
    assert result.errors == ["Insufficient stock for Diploma Frame. Available: 2"]


def test_validate_missing_cart_is_empty(db_session: Session):
    result = CartService(db_session).validate_cart(session_id="nobody")

    assert result.is_valid is False
    assert result.errors == ["Cart is empty"]


def test_free_shipping_boundary(db_session: Session, make_product):
    service = CartService(db_session)
    service.add_item_to_cart(None, "at-threshold", make_product(price="75.00").id, 1)
    service.add_item_to_cart(None, "below-threshold", make_product(price="74.99").id, 1)

    assert service.get_cart_summary(session_id="at-threshold").shipping == Decimal("0.00")
    assert service.get_cart_summary(session_id="below-threshold").shipping == Decimal("9.99")


def test_summary_for_shopper_without_cart(db_session: Session):
    summary = CartService(db_session).get_cart_summary(session_id="new-guest")

    assert summary.item_count == 0
    assert summary.total == Decimal("0.00")
    assert db_session.query(Cart).count() == 0


def test_apply_promo_code_quotes_without_mutating(db_session: Session, make_product):
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", make_product(price="50.00").id, 2)

    quote = service.apply_promo_code(None, "guest-1", "WELCOME10")

    assert quote.discount == Decimal("10.00")
    assert service.get_cart_summary(session_id="guest-1").subtotal == Decimal("100.00")


def test_apply_promo_code_minimum(db_session: Session, make_product):
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", make_product(price="20.00").id, 1)

    with pytest.raises(MinimumOrderNotMet):
        service.apply_promo_code(None, "guest-1", "WELCOME10")


def test_merge_guest_cart_sums_quantities(db_session: Session, make_product):
    product_a = make_product(price="10.00", stock_count=20)
    product_b = make_product(price="5.00", stock_count=20)
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product_a.id, 1)
    service.add_item_to_cart("7", None, product_a.id, 2)
    service.add_item_to_cart("7", None, product_b.id, 1)

    merged = service.merge_guest_cart_with_user_cart("guest-1", "7")

    assert {item.product_id: item.quantity for item in merged.items} == {product_a.id: 3, product_b.id: 1}
    assert service.get_cart(session_id="guest-1") is None
    assert db_session.query(Cart).count() == 1


def test_merge_keeps_guest_captured_price(db_session: Session, make_product):
    product = make_product(price="10.00")
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 1)

    product.price = Decimal("14.00")
    db_session.commit()

    merged = service.merge_guest_cart_with_user_cart("guest-1", "7")

    assert merged.user_id == "7"
    assert merged.items[0].price == Decimal("10.00")


def test_merge_without_guest_cart_is_a_noop(db_session: Session, make_product):
    service = CartService(db_session)
    service.get_or_create_cart(session_id="empty-guest")

    assert service.merge_guest_cart_with_user_cart("missing", "7") is None
    assert service.merge_guest_cart_with_user_cart("empty-guest", "7") is None
    assert service.get_cart(user_id="7") is None


def test_shipping_options_follow_cart_subtotal(db_session: Session, make_product):
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", make_product(price="120.00").id, 1)

    options = service.calculate_shipping_options(session_id="guest-1")

    assert [option["id"] for option in options] == ["standard", "express", "overnight"]
    assert options[0]["price"] == Decimal("0.00")
    assert options[1]["price"] == Decimal("15.99")


def test_is_product_in_cart(db_session: Session, make_product):
    product = make_product()
    service = CartService(db_session)

    assert service.is_product_in_cart(None, "guest-1", product.id) is False
    service.add_item_to_cart(None, "guest-1", product.id, 2)
    assert service.is_product_in_cart(None, "guest-1", product.id) is True
    assert service.get_item_quantity(None, "guest-1", product.id) == 2


def test_add_checks_identity_before_product(db_session: Session):
    with pytest.raises(IdentityRequired):
        CartService(db_session).add_item_to_cart(None, None, 9999, 1)
    with pytest.raises(IdentityRequired):
        CartService(db_session).update_item_quantity(None, None, 9999, 1)


def test_line_quantity_cap_counts_what_is_already_in_cart(db_session: Session, make_product):
    product = make_product(stock_count=5000)
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 1000)

    with pytest.raises(InvalidQuantity) as exc_info:
        service.add_item_to_cart(None, "guest-1", product.id, 1)
    with pytest.raises(InvalidQuantity):
        service.update_item_quantity(None, "guest-1", product.id, 1001)

    assert exc_info.value.message == "Quantity cannot exceed 1000"
    assert service.get_item_quantity(None, "guest-1", product.id) == 1000


def test_merge_creates_user_cart_when_missing(db_session: Session, make_product):
    product = make_product(price="10.00")
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product.id, 2)

    merged = service.merge_guest_cart_with_user_cart("guest-1", "9")

    assert merged.user_id == "9"
    assert [(item.product_id, item.quantity) for item in merged.items] == [(product.id, 2)]
    assert db_session.query(Cart).count() == 1


def test_merge_survives_user_cart_created_concurrently(db_session: Session, make_product, monkeypatch):
    product = make_product(price="10.00")
    product_id = product.id
    service = CartService(db_session)
    service.add_item_to_cart(None, "guest-1", product_id, 2)
    existing_id = service.get_or_create_cart(user_id="9").id

    # The first lookup misses, as if another request inserted the cart just after it
    real_find = service.carts.find_by_user_id
    calls = {"count": 0}

    def stale_find(user_id):
        calls["count"] += 1
        return None if calls["count"] == 1 else real_find(user_id)

    monkeypatch.setattr(service.carts, "find_by_user_id", stale_find)

    merged = service.merge_guest_cart_with_user_cart("guest-1", "9")

    assert merged.id == existing_id
    assert [(item.product_id, item.quantity) for item in merged.items] == [(product_id, 2)]
    assert db_session.query(Cart).filter(Cart.session_id == "guest-1").count() == 0
    assert db_session.query(Cart).count() == 1
