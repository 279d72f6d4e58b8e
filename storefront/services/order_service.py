from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

import structlog
from fastapi import status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.exceptions import (
    APIError,
    CartEmpty,
    CartValidationFailed,
    InsufficientStock,
    InvalidStatusTransition,
    OrderNotFound,
    ProductInactive,
    ProductNotFound,
    TransactionFailed,
)
from storefront.domain.cart import CartAggregate
from storefront.domain.order import (
    OrderDraft,
    OrderLine,
    OrderTotals,
    describe_status,
    ensure_payment_transition,
    ensure_status_transition,
)
from storefront.domain.pricing import quote_promo_code
from storefront.models.order import Order, OrderStatus, PaymentStatus
from storefront.repositories.cart_repository import CartRepository
from storefront.repositories.order_repository import OrderRepository
from storefront.repositories.product_repository import ProductRepository
from storefront.schemas.order import CheckoutRequest, OrderCreate
from storefront.services.cart_service import resolve_identity
from storefront.utils.money import round_money, to_decimal

logger = structlog.get_logger()


def _dump(model) -> Optional[dict]:
    return model.model_dump(mode="json") if model is not None else None


class OrderService:
    """Order factory and lifecycle. Every public write is one transaction."""

    def __init__(
        self,
        db: Session,
        products: Optional[ProductRepository] = None,
        orders: Optional[OrderRepository] = None,
        carts: Optional[CartRepository] = None,
    ):
        self.db = db
        self.products = products or ProductRepository(db)
        self.orders = orders or OrderRepository(db)
        self.carts = carts or CartRepository(db)

    # Creation

    def checkout(self, user_id: Optional[str], session_id: Optional[str], request: CheckoutRequest) -> Order:
        """Turn the shopper's cart into an order.

        Lines keep the price captured in the cart. Stock is decremented and
        the cart cleared in the same transaction as the order insert.
        """
        owner_user, owner_session = resolve_identity(user_id, session_id)
        cart = self.carts.find_by_user_id(owner_user) if owner_user else self.carts.find_by_session_id(owner_session)
        if cart is None or not cart.items:
            raise CartEmpty()

        snapshots = {item.product_id: self.products.find_product_by_id(item.product_id) for item in cart.items}
        aggregate = CartAggregate.from_model(cart, snapshots)
        validation = aggregate.validate()
        if not validation.is_valid:
            raise CartValidationFailed(validation.errors)

        summary = aggregate.get_summary(
            tax_rate=to_decimal(settings.TAX_RATE),
            free_threshold=to_decimal(settings.FREE_SHIPPING_THRESHOLD),
            flat_fee=to_decimal(settings.FLAT_SHIPPING_FEE),
        )
        discount = Decimal("0")
        promo_code = None
        if request.promo_code:
            quote = quote_promo_code(request.promo_code, summary.subtotal, summary.shipping)
            discount, promo_code = quote.discount, quote.code

        lines = [
            OrderLine(
                product_id=line.product_id,
                product_name=line.product.name,
                product_sku=line.product.sku,
                product_slug=line.product.slug,
                product_image_url=line.product.image_url,
                quantity=line.quantity,
                unit_price=line.price,
            )
            for line in aggregate.items
        ]
        totals = OrderTotals(
            subtotal=sum((line.total_price for line in lines), Decimal("0")),
            tax_amount=summary.tax,
            shipping_amount=summary.shipping,
            discount_amount=discount,
        )
        draft = OrderDraft(
            lines=lines,
            totals=totals,
            user_id=owner_user,
            session_id=owner_session,
            payment_method=request.payment_method,
            currency=settings.CURRENCY,
            promo_code=promo_code,
            shipping_address=_dump(request.shipping_address),
            billing_address=_dump(request.billing_address or request.shipping_address),
            customer_info=_dump(request.customer_info),
            notes=request.notes,
            estimated_delivery_date=self._estimated_delivery(),
        )
        return self._persist(draft, clear_cart_id=cart.id)

    def create_order(
        self,
        payload: OrderCreate,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Order:
        """Create an order from a raw item payload, filling gaps from the catalog."""
        try:
            lines = [self._line_from_payload(item) for item in payload.items]
            totals = OrderTotals.for_lines(
                lines,
                tax_amount=payload.tax_amount,
                shipping_amount=payload.shipping_amount,
                discount_amount=payload.discount_amount,
            )
        except ValueError as exc:
            raise APIError(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
        draft = OrderDraft(
            lines=lines,
            totals=totals,
            user_id=str(user_id) if user_id else None,
            session_id=None if user_id else session_id,
            payment_method=payload.payment_method,
            currency=settings.CURRENCY,
            shipping_address=_dump(payload.shipping_address),
            billing_address=_dump(payload.billing_address or payload.shipping_address),
            customer_info=_dump(payload.customer_info),
            notes=payload.notes,
            estimated_delivery_date=self._estimated_delivery(),
        )
        return self._persist(draft)

    def calculate_order_totals(self, items: Iterable, promo_code: Optional[str] = None) -> dict:
        """Quote totals for ``(product_id, quantity)`` items at live catalog prices."""
        lines = []
        for item in items:
            product_id, quantity = _item_fields(item)
            product = self.products.find_product_by_id(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            if not product.is_active:
                raise ProductInactive(product.name)
            if not product.can_purchase(quantity):
                raise InsufficientStock(product.stock_count, product.name)
            lines.append(
                OrderLine(
                    product_id=product.id,
                    product_name=product.name,
                    product_slug=product.slug,
                    product_image_url=product.image_url,
                    quantity=quantity,
                    unit_price=product.price,
                )
            )

        subtotal = sum((line.total_price for line in lines), Decimal("0"))
        tax = round_money(subtotal * to_decimal(settings.TAX_RATE))
        if subtotal >= to_decimal(settings.FREE_SHIPPING_THRESHOLD):
            shipping = Decimal("0")
        else:
            shipping = to_decimal(settings.FLAT_SHIPPING_FEE)

        promo = None
        discount = Decimal("0")
        if promo_code:
            promo = quote_promo_code(promo_code, subtotal, shipping)
            discount = promo.discount

        totals = OrderTotals(subtotal=subtotal, tax_amount=tax, shipping_amount=shipping, discount_amount=discount)
        return {
            "items": [line.to_row() for line in lines],
            "totals": totals.to_dict(),
            "promo": promo.to_dict() if promo else None,
        }

    # Reads

    def get_order(self, order_id: int) -> Order:
        order = self.orders.find_by_id(order_id)
        if not order:
            raise OrderNotFound()
        return order

    def get_order_by_number(self, order_number: str) -> Order:
        order = self.orders.find_by_order_number(order_number)
        if not order:
            raise OrderNotFound()
        return order

    def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        user_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Order], int]:
        return self.orders.find_all(
            status=status,
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            page=page,
            limit=limit,
        )

    def get_order_tracking(self, order_id: int) -> dict:
        order = self.get_order(order_id)
        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "current_status": order.status.value,
            "payment_status": order.payment_status.value,
            "tracking_number": order.tracking_number,
            "carrier_name": order.carrier_name,
            "order_date": order.created_at,
            "estimated_delivery_date": order.estimated_delivery_date,
            "status_history": [
                {
                    "id": event.id,
                    "old_status": event.old_status,
                    "new_status": event.new_status,
                    "changed_by": event.changed_by,
                    "notes": event.notes,
                    "description": describe_status(OrderStatus(event.new_status)),
                    "created_at": event.created_at,
                }
                for event in order.status_history
            ],
        }

    def get_order_statistics(self, days: int = 30) -> dict:
        return self.orders.statistics(days)

    # Lifecycle

    def update_status(
        self,
        order_id: int,
        status: OrderStatus,
        notes: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> Order:
        order = self.get_order(order_id)
        if status == OrderStatus.CANCELLED:
            return self.cancel_order(order_id, reason=notes, changed_by=changed_by)

        old_status = order.status
        ensure_status_transition(old_status, status, order.payment_status)

        fields = {"status": status}
        if status == OrderStatus.REFUNDED:
            fields["payment_status"] = PaymentStatus.REFUNDED
        try:
            self.orders.update(order, **fields)
            self.orders.add_status_event(order, old_status, status, changed_by=changed_by, notes=notes)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "order_status_changed",
            order_id=order.id,
            old_status=old_status.value,
            new_status=status.value,
            changed_by=changed_by,
        )
        return order

    def update_payment_status(self, order_id: int, payment_status: PaymentStatus) -> Order:
        order = self.get_order(order_id)
        old_status = order.payment_status
        ensure_payment_transition(old_status, payment_status)
        try:
            self.orders.update(order, payment_status=payment_status)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "order_payment_status_changed",
            order_id=order.id,
            old_status=old_status.value,
            new_status=payment_status.value,
        )
        return order

    def add_tracking_number(
        self,
        order_id: int,
        tracking_number: str,
        carrier_name: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> Order:
        """Attach tracking info. An order still in processing moves to shipped."""
        order = self.get_order(order_id)
        fields = {"tracking_number": tracking_number}
        if carrier_name:
            fields["carrier_name"] = carrier_name

        old_status = order.status
        ships_now = old_status == OrderStatus.PROCESSING
        if ships_now:
            fields["status"] = OrderStatus.SHIPPED
        try:
            self.orders.update(order, **fields)
            if ships_now:
                self.orders.add_status_event(
                    order,
                    old_status,
                    OrderStatus.SHIPPED,
                    changed_by=changed_by,
                    notes=f"Tracking number {tracking_number} added",
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("order_tracking_added", order_id=order.id, tracking_number=tracking_number, shipped=ships_now)
        return order

    def cancel_order(self, order_id: int, reason: Optional[str] = None, changed_by: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        if not order.can_cancel():
            raise InvalidStatusTransition(order.status.value, OrderStatus.CANCELLED.value)

        old_status = order.status
        restocked = False
        try:
            fields = {"status": OrderStatus.CANCELLED}
            if order.stock_deducted and settings.RESTOCK_ON_CANCEL:
                for item in order.items:
                    if item.product_id is not None:
                        self.products.restock(item.product_id, item.quantity)
                fields["stock_deducted"] = False
                restocked = True
            self.orders.update(order, **fields)
            self.orders.add_status_event(
                order,
                old_status,
                OrderStatus.CANCELLED,
                changed_by=changed_by,
                notes=reason or "Order cancelled",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("order_cancelled", order_id=order.id, previous_status=old_status.value, restocked=restocked)
        return order

    def delete_order(self, order_id: int) -> None:
        try:
            if not self.orders.delete(order_id):
                raise OrderNotFound()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("order_deleted", order_id=order_id)

    # Internals

    def _persist(self, draft: OrderDraft, clear_cart_id: Optional[int] = None) -> Order:
        try:
            order_number = self.orders.generate_order_number(settings.ORDER_NUMBER_PREFIX)
            order = self.orders.create(draft, order_number)

            if settings.DECREMENT_STOCK_ON_ORDER:
                for line in draft.lines:
                    if line.product_id is None:
                        continue
                    if not self.products.decrement_stock(line.product_id, line.quantity):
                        product = self.products.find_product_by_id(line.product_id)
                        available = product.stock_count if product else 0
                        raise InsufficientStock(available, line.product_name)
                self.orders.update(order, stock_deducted=True)

            if clear_cart_id is not None:
                self.carts.clear(clear_cart_id)

            self.db.commit()
        except APIError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("order_create_failed", user_id=draft.user_id, items=len(draft.lines))
            raise TransactionFailed() from exc
        except Exception:
            self.db.rollback()
            logger.exception("order_create_failed", user_id=draft.user_id, items=len(draft.lines))
            raise

        logger.info(
            "order_created",
            order_id=order.id,
            order_number=order.order_number,
            user_id=draft.user_id,
            total_amount=str(draft.totals.total_amount),
            items=len(draft.lines),
        )
        return order

    def _line_from_payload(self, item) -> OrderLine:
        product = None
        needs_catalog = item.unit_price is None or not item.product_name
        if item.product_id is not None and needs_catalog:
            product = self.products.find_product_by_id(item.product_id)
            if product is None:
                raise ProductNotFound(item.product_id)
        elif needs_catalog:
            raise ProductNotFound()

        unit_price = item.unit_price if item.unit_price is not None else product.price
        return OrderLine(
            product_id=item.product_id,
            product_name=item.product_name or product.name,
            product_sku=item.product_sku or (product.sku if product else None),
            product_slug=item.product_slug or (product.slug if product else None),
            product_image_url=item.product_image_url or (product.image_url if product else None),
            quantity=item.quantity,
            unit_price=unit_price,
            total_price=item.total_price,
        )

    @staticmethod
    def _estimated_delivery() -> datetime:
        return datetime.utcnow() + timedelta(days=settings.ESTIMATED_DELIVERY_DAYS)


def _item_fields(item) -> Tuple[int, int]:
    if isinstance(item, dict):
        return int(item["product_id"]), int(item["quantity"])
    return item.product_id, item.quantity
