from sqlalchemy.orm import Session

from storefront.db.init_db import DEMO_PRODUCTS, init_db
from storefront.models.product import Product


def test_init_db_seeds_catalog_once(db_session: Session):
    assert init_db(db_session) == len(DEMO_PRODUCTS)
    assert init_db(db_session) == 0
    assert db_session.query(Product).count() == len(DEMO_PRODUCTS)


def test_init_db_derives_slugs_from_names(db_session: Session):
    init_db(db_session, products=[{"name": "Tassel Year Charm", "sku": "GB-TSL-001", "price": "7.50", "stock_count": 3}])

    product = db_session.query(Product).one()
    assert product.slug == "tassel-year-charm"
    assert product.is_active is True
