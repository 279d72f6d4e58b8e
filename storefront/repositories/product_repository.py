from typing import Optional
from sqlalchemy.orm import Session

from storefront.domain.catalog import ProductSnapshot
from storefront.models.product import Product


class ProductRepository:
    """SQL-backed catalog reader plus the stock writes done by order transactions."""

    def __init__(self, db: Session):
        self.db = db

    def find_product_by_id(self, product_id: int) -> Optional[ProductSnapshot]:
        product = self.db.get(Product, product_id)
        if product is None:
            return None
        return ProductSnapshot.from_model(product)

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """Conditional decrement; False when fewer than ``quantity`` units remain."""
        updated = (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.stock_count >= quantity)
            .update(
                {Product.stock_count: Product.stock_count - quantity},
                synchronize_session="fetch",
            )
        )
        return updated == 1

    def restock(self, product_id: int, quantity: int) -> None:
        self.db.query(Product).filter(Product.id == product_id).update(
            {Product.stock_count: Product.stock_count + quantity},
            synchronize_session="fetch",
        )