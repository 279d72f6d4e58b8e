from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Text, Boolean, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from storefront.db.base_class import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(255), nullable=True)

    # Pricing (snapshot, never re-derived from items)
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), default=0, nullable=False)
    shipping_amount = Column(Numeric(10, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(10, 2), default=0, nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    promo_code = Column(String(50), nullable=True)

    # Status & Tracking
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    payment_method = Column(String(50), nullable=True)
    tracking_number = Column(String(100), nullable=True)
    carrier_name = Column(String(100), nullable=True)
    estimated_delivery_date = Column(DateTime, nullable=True)
    stock_deducted = Column(Boolean, default=False, nullable=False)

    # Snapshots (structured copies, not references)
    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)
    customer_info = Column(JSON, nullable=True)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )

    def can_cancel(self) -> bool:
        return self.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)

    def can_refund(self) -> bool:
        return (
            self.status in (OrderStatus.COMPLETED, OrderStatus.DELIVERED)
            and self.payment_status == PaymentStatus.PAID
        )

    def get_total_items(self) -> int:
        return sum(item.quantity for item in self.items)


Index("ix_orders_status_created_at", Order.status, Order.created_at)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)

    # Snapshot at order time
    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(100), nullable=True)
    product_slug = Column(String(255), nullable=True)
    product_image_url = Column(String(500), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="items")
