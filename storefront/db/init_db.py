from decimal import Decimal
from typing import Iterable, Optional

import structlog
from slugify import slugify
from sqlalchemy.orm import Session

from storefront.models.product import Product

logger = structlog.get_logger()

DEMO_PRODUCTS = [
    {"name": "Classic Graduation Cap", "sku": "GB-CAP-001", "price": "24.99", "stock_count": 120},
    {"name": "Graduation Gown", "sku": "GB-GWN-001", "price": "59.99", "stock_count": 60},
    {"name": "Honor Stole", "sku": "GB-STL-001", "price": "19.50", "stock_count": 200},
    {"name": "Diploma Frame", "sku": "GB-FRM-001", "price": "44.00", "stock_count": 35},
    {"name": "Class Ring", "sku": "GB-RNG-001", "price": "149.00", "original_price": "179.00", "stock_count": 10},
]


def init_db(db: Session, products: Optional[Iterable[dict]] = None) -> int:
    """Seed catalog products. Safe to run repeatedly; existing slugs are skipped.

    Returns the number of products created.
    """
    created = 0
    for data in products if products is not None else DEMO_PRODUCTS:
        slug = data.get("slug") or slugify(data["name"])
        if db.query(Product.id).filter(Product.slug == slug).first():
            continue

        db.add(
            Product(
                name=data["name"],
                slug=slug,
                sku=data.get("sku"),
                description=data.get("description"),
                price=Decimal(str(data["price"])),
                original_price=Decimal(str(data["original_price"])) if data.get("original_price") else None,
                stock_count=data.get("stock_count", 0),
                is_active=data.get("is_active", True),
                image_url=data.get("image_url"),
            )
        )
        created += 1
        logger.info("product_seeded", slug=slug)

    db.commit()
    return created


if __name__ == "__main__":
    from storefront.core.logging_config import configure_logging
    from storefront.db.session import SessionLocal

    configure_logging()
    session = SessionLocal()
    try:
        count = init_db(session)
        logger.info("catalog_seed_complete", created=count)
    finally:
        session.close()
