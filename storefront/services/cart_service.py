from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import (
    IdentityRequired,
    InsufficientStock,
    InvalidQuantity,
    ProductInactive,
    ProductNotFound,
)
from storefront.domain.cart import CartAggregate, CartSummary, CartValidation, ensure_line_limit, ensure_quantity
from storefront.domain.catalog import CatalogReader, ProductSnapshot
from storefront.domain.pricing import PromoQuote, quote_for_summary, shipping_options
from storefront.models.cart import Cart
from storefront.repositories.cart_repository import CartRepository
from storefront.repositories.product_repository import ProductRepository
from storefront.utils.money import round_money, to_decimal

logger = structlog.get_logger()


def resolve_identity(user_id: Optional[str] = None, session_id: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Pick the identity that owns the cart. A user id always wins over a session id."""
    if user_id:
        return str(user_id), None
    if session_id:
        return None, session_id
    raise IdentityRequired()


class CartService:
    """Cart use cases. Each public method is one unit of work and commits or
    rolls back the session before returning."""

    def __init__(
        self,
        db: Session,
        catalog: Optional[CatalogReader] = None,
        carts: Optional[CartRepository] = None,
    ):
        self.db = db
        self.catalog = catalog or ProductRepository(db)
        self.carts = carts or CartRepository(db)
        self.tax_rate = to_decimal(settings.TAX_RATE)
        self.free_shipping_threshold = to_decimal(settings.FREE_SHIPPING_THRESHOLD)
        self.flat_shipping_fee = to_decimal(settings.FLAT_SHIPPING_FEE)

    @property
    def summary_options(self) -> dict:
        return {
            "tax_rate": self.tax_rate,
            "free_threshold": self.free_shipping_threshold,
            "flat_fee": self.flat_shipping_fee,
        }

    def get_or_create_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> CartAggregate:
        cart = self._load_or_create(user_id, session_id)
        self.db.commit()
        return self._build(cart)

    def get_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> Optional[CartAggregate]:
        """Read-only lookup; never creates a cart."""
        cart = self._find(user_id, session_id)
        return self._build(cart) if cart else None

    def add_item_to_cart(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        product_id: int,
        quantity: int = 1,
    ) -> CartAggregate:
        resolve_identity(user_id, session_id)
        ensure_quantity(quantity)
        product = self._require_product(product_id)

        try:
            cart = self._load_or_create(user_id, session_id)
            in_cart = next((item.quantity for item in cart.items if item.product_id == product_id), 0)
            ensure_line_limit(in_cart + quantity)
            if not product.can_purchase(in_cart + quantity):
                raise InsufficientStock(product.stock_count)

            cart = self.carts.add_item(cart.id, product_id, quantity, round_money(product.price))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("cart_item_added", cart_id=cart.id, product_id=product_id, quantity=quantity)
        return self._build(cart)

    def update_item_quantity(
        self,
        user_id: Optional[str],
        session_id: Optional[str],
        product_id: int,
        quantity: int,
    ) -> CartAggregate:
        resolve_identity(user_id, session_id)
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidQuantity("Quantity must be a whole number")
        if quantity < 0:
            raise InvalidQuantity("Quantity cannot be negative")
        if quantity == 0:
            return self.remove_item_from_cart(user_id, session_id, product_id)

        ensure_line_limit(quantity)
        product = self._require_product(product_id)
        if not product.can_purchase(quantity):
            raise InsufficientStock(product.stock_count)

        try:
            cart = self._load_or_create(user_id, session_id)
            cart = self.carts.update_item_quantity(cart.id, product_id, quantity)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("cart_item_updated", cart_id=cart.id, product_id=product_id, quantity=quantity)
        return self._build(cart)

    def remove_item_from_cart(self, user_id: Optional[str], session_id: Optional[str], product_id: int) -> CartAggregate:
        try:
            cart = self._load_or_create(user_id, session_id)
            cart = self.carts.remove_item(cart.id, product_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("cart_item_removed", cart_id=cart.id, product_id=product_id)
        return self._build(cart)

    def clear_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> CartAggregate:
        try:
            cart = self._load_or_create(user_id, session_id)
            cart = self.carts.clear(cart.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("cart_cleared", cart_id=cart.id)
        return self._build(cart)

    def validate_cart(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> CartValidation:
        """Validate the cart against the live catalog.

        Business-rule problems come back in ``errors``. Captured prices that
        drifted from the catalog are corrected in place and reported as
        ``warnings``; they never block checkout.
        """
        cart = self._find(user_id, session_id)
        if cart is None:
            return CartValidation(is_valid=False, errors=["Cart is empty"])

        products = self._snapshots(cart)
        warnings = []
        try:
            for item in list(cart.items):
                product = products.get(item.product_id)
                if product is None:
                    continue
                live_price = round_money(product.price)
                captured = round_money(item.price)
                if live_price != captured:
                    self.carts.update_item_price(cart.id, item.product_id, live_price)
                    warnings.append(f"Price of {product.name} has changed from ${captured} to ${live_price}")
            if warnings:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        result = CartAggregate.from_model(cart, products).validate()
        result.warnings.extend(warnings)
        if warnings:
            logger.info("cart_prices_reconciled", cart_id=cart.id, changes=len(warnings))
        return result

    def get_cart_summary(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> CartSummary:
        cart = self._find(user_id, session_id)
        if cart is None:
            owner_user, owner_session = resolve_identity(user_id, session_id)
            return CartAggregate(user_id=owner_user, session_id=owner_session).get_summary(**self.summary_options)
        return self._build(cart).get_summary(**self.summary_options)

    def is_product_in_cart(self, user_id: Optional[str], session_id: Optional[str], product_id: int) -> bool:
        return self.get_item_quantity(user_id, session_id, product_id) > 0

    def get_item_quantity(self, user_id: Optional[str], session_id: Optional[str], product_id: int) -> int:
        cart = self._find(user_id, session_id)
        if cart is None:
            return 0
        return next((item.quantity for item in cart.items if item.product_id == product_id), 0)

    def merge_guest_cart_with_user_cart(self, guest_session_id: str, user_id: str) -> Optional[CartAggregate]:
        """Fold a guest cart into the user's cart and delete the guest cart.

        Quantities of products present in both carts are summed; other lines
        keep the price the guest captured. Runs as a single transaction.
        Returns None when there is no guest cart or it holds nothing.
        """
        if not user_id:
            raise IdentityRequired()

        guest_cart = self.carts.find_by_session_id(guest_session_id)
        if guest_cart is None or not guest_cart.items:
            return None

        guest_lines = [(item.product_id, item.quantity, item.price) for item in guest_cart.items]
        try:
            user_cart = self.carts.find_by_user_id(str(user_id))
            if user_cart is None:
                user_cart = self.carts.create(user_id=str(user_id))
                # A create conflict rolls the session back, so re-read the guest cart
                guest_cart = self.carts.find_by_session_id(guest_session_id)
                if guest_cart is None:
                    return None

            for product_id, quantity, price in guest_lines:
                self.carts.add_item(user_cart.id, product_id, quantity, price)

            self.carts.delete(guest_cart.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("cart_merge_failed", guest_session_id=guest_session_id, user_id=user_id)
            raise

        logger.info("cart_merged", cart_id=user_cart.id, user_id=user_id, merged_items=len(guest_lines))
        return self._build(user_cart)

    def calculate_shipping_options(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> List[dict]:
        summary = self.get_cart_summary(user_id, session_id)
        return shipping_options(summary.subtotal, self.free_shipping_threshold, self.flat_shipping_fee)

    def apply_promo_code(self, user_id: Optional[str], session_id: Optional[str], code: str) -> PromoQuote:
        """Quote a promo code against the current cart. Nothing is persisted."""
        summary = self.get_cart_summary(user_id, session_id)
        quote = quote_for_summary(code, summary)
        logger.info("promo_code_quoted", code=quote.code, discount=str(quote.discount))
        return quote

    def _find(self, user_id: Optional[str], session_id: Optional[str]) -> Optional[Cart]:
        owner_user, owner_session = resolve_identity(user_id, session_id)
        if owner_user:
            return self.carts.find_by_user_id(owner_user)
        return self.carts.find_by_session_id(owner_session)

    def _load_or_create(self, user_id: Optional[str], session_id: Optional[str]) -> Cart:
        cart = self._find(user_id, session_id)
        if cart is not None:
            return cart

        owner_user, owner_session = resolve_identity(user_id, session_id)
        cart = self.carts.create(user_id=owner_user, session_id=owner_session)
        logger.info("cart_created", cart_id=cart.id, user_id=owner_user, session_id=owner_session)
        return cart

    def _require_product(self, product_id: int) -> ProductSnapshot:
        product = self.catalog.find_product_by_id(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        if not product.is_active:
            raise ProductInactive(product.name)
        return product

    def _snapshots(self, cart: Cart) -> Dict[int, Optional[ProductSnapshot]]:
        return {item.product_id: self.catalog.find_product_by_id(item.product_id) for item in cart.items}

    def _build(self, cart: Cart) -> CartAggregate:
        return CartAggregate.from_model(cart, self._snapshots(cart))
