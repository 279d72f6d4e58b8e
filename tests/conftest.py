import os
import tempfile
from collections.abc import Callable, Generator
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-storefront-orders-suite")

import storefront.db.base  # noqa: F401
from storefront.core.config import settings
from storefront.db.base_class import Base
from storefront.db.session import get_db
from storefront.main import app
from storefront.models.product import Product


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_product(db_session: Session) -> Callable[..., Product]:
    counter = {"value": 0}

    def _make_product(
        price: str = "10.00",
        stock_count: int = 10,
        is_active: bool = True,
        name: str = None,
    ) -> Product:
        counter["value"] += 1
        index = counter["value"]
        product = Product(
            name=name or f"Product {index}",
            slug=f"product-{index}",
            sku=f"SKU-{index}",
            price=Decimal(price),
            stock_count=stock_count,
            is_active=is_active,
            image_url=f"https://cdn.example.com/product-{index}.jpg",
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make_product


def auth_headers(user_id: str, role: str = "customer") -> dict:
    token = jwt.encode(
        {"sub": str(user_id), "role": role, "type": "access"},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}


def session_headers(session_id: str) -> dict:
    return {settings.SESSION_HEADER: session_id}


SHIPPING_ADDRESS = {
    "full_name": "Jamie Rivera",
    "address_line1": "12 College Ave",
    "city": "Austin",
    "state": "TX",
    "postal_code": "78701",
    "country": "US",
}

CUSTOMER_INFO = {
    "first_name": "Jamie",
    "last_name": "Rivera",
    "email": "jamie@example.com",
}
