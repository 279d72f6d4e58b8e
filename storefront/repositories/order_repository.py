from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session, selectinload

from storefront.domain.order import OrderDraft, generate_order_number
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.order_status_history import OrderStatusHistory
from storefront.utils.money import round_money

# Everything else on an order (money, items, addresses) is frozen at creation
MUTABLE_ORDER_FIELDS = frozenset({
    "status",
    "payment_status",
    "tracking_number",
    "carrier_name",
    "notes",
    "estimated_delivery_date",
    "stock_deducted",
})


class OrderRepository:
    """Order Store. Flushes only; the calling service commits or rolls back."""

    def __init__(self, db: Session):
        self.db = db

    def generate_order_number(self, prefix: str) -> str:
        """Generate a unique order number with bounded retries."""
        max_attempts = 10

        for _ in range(max_attempts):
            order_number = generate_order_number(prefix)
            existing = self.db.query(Order.id).filter(Order.order_number == order_number).first()
            if not existing:
                return order_number

        raise ValueError("Failed to generate unique order number")

    def create(self, draft: OrderDraft, order_number: str) -> Order:
        totals = draft.totals
        order = Order(
            order_number=order_number,
            user_id=draft.user_id,
            session_id=draft.session_id,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            shipping_amount=totals.shipping_amount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            currency=draft.currency,
            promo_code=draft.promo_code,
            status=draft.status,
            payment_status=draft.payment_status,
            payment_method=draft.payment_method,
            shipping_address=draft.shipping_address,
            billing_address=draft.billing_address,
            customer_info=draft.customer_info,
            notes=draft.notes,
            estimated_delivery_date=draft.estimated_delivery_date,
        )
        self.db.add(order)
        # Header row goes in before any item row
        self.db.flush()

        for line in draft.lines:
            self.add_item(order, line.to_row())

        self.add_status_event(order, None, order.status, notes="Order placed")
        return order

    def add_item(self, order: Order, row: dict) -> OrderItem:
        item = OrderItem(order_id=order.id, **row)
        order.items.append(item)
        self.db.flush()
        return item

    def add_status_event(
        self,
        order: Order,
        old_status: Optional[OrderStatus],
        new_status: OrderStatus,
        changed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OrderStatusHistory:
        event = OrderStatusHistory(
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            changed_by=changed_by,
            notes=notes,
        )
        order.status_history.append(event)
        self.db.flush()
        return event

    def find_by_id(self, order_id: int) -> Optional[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.id == order_id)
            .first()
        )

    def find_by_order_number(self, order_number: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .options(selectinload(Order.items))
            .filter(Order.order_number == order_number)
            .first()
        )

    def find_all(
        self,
        status: Optional[OrderStatus] = None,
        user_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = 10,
    ) -> Tuple[List[Order], int]:
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if user_id:
            query = query.filter(Order.user_id == user_id)
        if start_date:
            query = query.filter(Order.created_at >= start_date)
        if end_date:
            query = query.filter(Order.created_at <= end_date)

        total = query.count()
        query = query.options(selectinload(Order.items)).order_by(Order.created_at.desc(), Order.id.desc())
        if limit:
            query = query.offset((max(page, 1) - 1) * limit).limit(limit)
        return query.all(), total

    def update(self, order: Order, **fields) -> Order:
        frozen = set(fields) - MUTABLE_ORDER_FIELDS
        if frozen:
            raise ValueError(f"Order fields cannot be changed after creation: {', '.join(sorted(frozen))}")
        if not fields:
            raise ValueError("No fields to update")

        for key, value in fields.items():
            setattr(order, key, value)
        order.updated_at = datetime.utcnow()
        self.db.flush()
        return order

    def delete(self, order_id: int) -> bool:
        order = self.db.get(Order, order_id)
        if order is None:
            return False
        self.db.delete(order)
        self.db.flush()
        return True

    def statistics(self, days: int = 30) -> dict:
        since = datetime.utcnow() - timedelta(days=days)
        row = (
            self.db.query(
                func.count(Order.id),
                func.coalesce(func.sum(Order.total_amount), 0),
                func.avg(Order.total_amount),
                func.sum(case((Order.status == OrderStatus.COMPLETED, 1), else_=0)),
                func.sum(case((Order.status == OrderStatus.PENDING, 1), else_=0)),
                func.sum(case((Order.status == OrderStatus.CANCELLED, 1), else_=0)),
            )
            .filter(Order.created_at >= since)
            .one()
        )
        total_orders, revenue, average, completed, pending, cancelled = row
        return {
            "period_days": days,
            "total_orders": int(total_orders or 0),
            "total_revenue": round_money(revenue or 0),
            "average_order_value": round_money(average or 0),
            "completed_orders": int(completed or 0),
            "pending_orders": int(pending or 0),
            "cancelled_orders": int(cancelled or 0),
        }
