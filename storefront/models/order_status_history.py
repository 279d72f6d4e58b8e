from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from storefront.db.base_class import Base


class OrderStatusHistory(Base):
    """Append-only log of order status changes."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    old_status = Column(String(50), nullable=True)  # Null for the creation event
    new_status = Column(String(50), nullable=False)

    changed_by = Column(String(64), nullable=True)  # Admin who changed it, null for system
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="status_history")
