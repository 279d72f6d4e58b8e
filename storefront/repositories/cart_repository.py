from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.exceptions import CartItemNotFound, IdentityRequired
from storefront.models.cart import Cart, CartItem

logger = structlog.get_logger()


class CartRepository:
    """Cart Store. Writes are flushed, never committed; the calling service owns
    the transaction."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, cart_id: int) -> Optional[Cart]:
        return self.db.get(Cart, cart_id)

    def find_by_user_id(self, user_id: Optional[str]) -> Optional[Cart]:
        if not user_id:
            return None
        return self.db.query(Cart).filter(Cart.user_id == user_id).first()

    def find_by_session_id(self, session_id: Optional[str]) -> Optional[Cart]:
        if not session_id:
            return None
        return self.db.query(Cart).filter(Cart.session_id == session_id).first()

    def create(self, user_id: Optional[str] = None, session_id: Optional[str] = None) -> Cart:
        """Insert a cart for exactly one identity.

        A concurrent insert for the same identity trips the unique constraint;
        that is treated as "already created" and the existing row is returned.
        Must run before any other pending write in the session, since recovering
        from the violation rolls the session back.
        """
        if user_id:
            session_id = None
        elif not session_id:
            raise IdentityRequired()

        cart = Cart(user_id=user_id, session_id=session_id)
        self.db.add(cart)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_by_user_id(user_id) if user_id else self.find_by_session_id(session_id)
            if existing is None:
                raise
            logger.info("cart_create_conflict_resolved", cart_id=existing.id, user_id=user_id, session_id=session_id)
            return existing
        return cart

    def add_item(self, cart_id: int, product_id: int, quantity: int, price: Decimal) -> Cart:
        cart = self._require(cart_id)
        existing = self._find_item(cart, product_id)
        if existing:
            # Keep the originally captured price
            existing.quantity = existing.quantity + quantity
        else:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity, price=price))
        return self._touch(cart)

    def update_item_quantity(self, cart_id: int, product_id: int, quantity: int) -> Cart:
        cart = self._require(cart_id)
        item = self._find_item(cart, product_id)
        if item is None:
            raise CartItemNotFound()
        item.quantity = quantity
        return self._touch(cart)

    def update_item_price(self, cart_id: int, product_id: int, price: Decimal) -> Cart:
        cart = self._require(cart_id)
        item = self._find_item(cart, product_id)
        if item is None:
            raise CartItemNotFound()
        item.price = price
        return self._touch(cart)

    def remove_item(self, cart_id: int, product_id: int) -> Cart:
        cart = self._require(cart_id)
        item = self._find_item(cart, product_id)
        if item is not None:
            cart.items.remove(item)
        return self._touch(cart)

    def clear(self, cart_id: int) -> Cart:
        cart = self._require(cart_id)
        cart.items.clear()
        return self._touch(cart)

    def delete(self, cart_id: int) -> bool:
        cart = self.get(cart_id)
        if cart is None:
            return False
        self.db.delete(cart)
        self.db.flush()
        return True

    def _require(self, cart_id: int) -> Cart:
        cart = self.get(cart_id)
        if cart is None:
            raise LookupError(f"Cart {cart_id} does not exist")
        return cart

    @staticmethod
    def _find_item(cart: Cart, product_id: int) -> Optional[CartItem]:
        return next((item for item in cart.items if item.product_id == product_id), None)

    def _touch(self, cart: Cart) -> Cart:
        cart.updated_at = datetime.utcnow()
        self.db.flush()
        return cart
