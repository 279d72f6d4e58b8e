from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Text, Index
from datetime import datetime
from storefront.db.base_class import Base


class Product(Base):
    """Catalog row. The cart and order core only reads it, except for stock
    decrements and restocks performed inside order transactions."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False, index=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    sku = Column(String(100), unique=True, nullable=True)
    description = Column(Text, nullable=True)

    # Pricing
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2), nullable=True)

    # Stock & Status
    stock_count = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    image_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


Index("idx_product_active_stock", Product.is_active, Product.stock_count)
