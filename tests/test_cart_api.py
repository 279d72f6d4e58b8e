from types import SimpleNamespace

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import CUSTOMER_INFO, SHIPPING_ADDRESS, auth_headers, session_headers
from storefront import main
from storefront.models.cart import Cart
from storefront.models.product import Product


def _add(client: TestClient, headers: dict, product_id: int, quantity: int = 1):
    return client.post(
        "/api/v1/cart/items",
        headers=headers,
        json={"product_id": product_id, "quantity": quantity},
    )


def test_health_endpoint(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_database_health_endpoint(client: TestClient):
    response = client.get("/health/database")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == main.engine.dialect.name


def test_database_health_failure_hides_driver_error(client: TestClient, monkeypatch):
    class UnreachableEngine:
        dialect = SimpleNamespace(name="postgresql")

        def connect(self):
            raise OperationalError("SELECT 1", {}, Exception("password authentication failed for user shop"))

    monkeypatch.setattr(main, "engine", UnreachableEngine())

    response = client.get("/health/database")

    assert response.status_code == 503
    assert response.json() == {"status": "unhealthy", "database": "postgresql"}
    assert "password" not in response.text


def test_cart_requires_user_or_session(client: TestClient):
    response = client.get("/api/v1/cart/")

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["message"] == "A user id or session id is required"


def test_guest_cart_roundtrip(client: TestClient, make_product):
    product = make_product(price="10.00")
    headers = session_headers("guest-api-1")

    response = _add(client, headers, product.id, 2)

    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["message"] == "Item added to cart"
    assert payload["data"]["session_id"] == "guest-api-1"
    assert payload["data"]["items"][0]["quantity"] == 2
    assert payload["data"]["items"][0]["price"] == 10.0
    assert payload["data"]["summary"]["subtotal"] == 20.0
    assert payload["data"]["summary"]["shipping"] == 9.99

    response = client.get("/api/v1/cart/", headers=headers)
    assert response.status_code == 200
    assert len(response.json()["data"]["items"]) == 1


def test_session_cookie_identifies_guest(client: TestClient, make_product):
    product = make_product()
    client.cookies.set("session_id", "cookie-guest")

    response = _add(client, {}, product.id)

    assert response.status_code == 201
    assert response.json()["data"]["session_id"] == "cookie-guest"


def test_token_user_wins_over_session(client: TestClient, make_product):
    product = make_product()
    headers = {**auth_headers("7"), **session_headers("guest-api-1")}

    response = _add(client, headers, product.id)

    assert response.status_code == 201
    assert response.json()["data"]["user_id"] == "7"
    assert response.json()["data"]["session_id"] is None


def test_invalid_token_is_rejected(client: TestClient):
    response = client.get("/api/v1/cart/", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["message"] == "Could not validate credentials"


def test_add_item_validation(client: TestClient, make_product):
    product = make_product(stock_count=1)
    headers = session_headers("guest-api-1")

    assert _add(client, headers, product.id, 0).status_code == 422
    assert _add(client, headers, 9999, 1).status_code == 404

    response = _add(client, headers, product.id, 2)
    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient stock. Available: 1"


def test_update_and_remove_item(client: TestClient, make_product):
    product = make_product(stock_count=10)
    headers = session_headers("guest-api-1")
    _add(client, headers, product.id, 1)

    response = client.put(f"/api/v1/cart/items/{product.id}", headers=headers, json={"quantity": 4})
    assert response.status_code == 200
    assert response.json()["data"]["items"][0]["quantity"] == 4

    response = client.get(f"/api/v1/cart/items/{product.id}", headers=headers)
    assert response.json()["data"] == {"product_id": product.id, "in_cart": True, "quantity": 4}

    response = client.delete(f"/api/v1/cart/items/{product.id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["items"] == []


def test_update_missing_item_returns_404(client: TestClient, make_product):
    product = make_product()

    response = client.put(
        f"/api/v1/cart/items/{product.id}",
        headers=session_headers("guest-api-1"),
        json={"quantity": 2},
    )

    assert response.status_code == 404
    assert response.json()["message"] == "Cart item not found"


def test_clear_cart(client: TestClient, make_product):
    headers = session_headers("guest-api-1")
    _add(client, headers, make_product().id)

    response = client.delete("/api/v1/cart/", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["summary"]["item_count"] == 0


def test_summary_and_shipping_options(client: TestClient, make_product):
    headers = session_headers("guest-api-1")
    _add(client, headers, make_product(price="80.00").id)

    summary = client.get("/api/v1/cart/summary", headers=headers).json()["data"]
    options = client.post("/api/v1/cart/shipping", headers=headers).json()["data"]

    assert summary["free_shipping_eligible"] is True
    assert summary["total"] == 86.4
    assert options[0]["id"] == "standard"
    assert options[0]["price"] == 0.0
    assert options[0]["estimated_days"] == 7


def test_validate_reports_problems(client: TestClient, db_session: Session, make_product):
    product = make_product(name="Class Ring")
    headers = session_headers("guest-api-1")
    _add(client, headers, product.id)
    product.is_active = False
    db_session.commit()

    response = client.get("/api/v1/cart/validate", headers=headers)

    assert response.status_code == 200
    assert response.json()["message"] == "Cart has issues"
    assert response.json()["data"]["errors"] == ["Class Ring is no longer available"]


def test_promo_code_quote(client: TestClient, make_product):
    headers = session_headers("guest-api-1")
    _add(client, headers, make_product(price="100.00").id)

    response = client.post("/api/v1/cart/promo", headers=headers, json={"code": "welcome10"})
    assert response.status_code == 200
    assert response.json()["data"]["discount"] == 10.0

    response = client.post("/api/v1/cart/promo", headers=headers, json={"code": "BOGUS"})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid promo code"


def test_merge_requires_login(client: TestClient):
    response = client.post("/api/v1/cart/merge", headers=session_headers("guest-api-1"), json={})

    assert response.status_code == 401


def test_merge_guest_cart_on_login(client: TestClient, db_session: Session, make_product):
    product = make_product(stock_count=10)
    _add(client, session_headers("guest-api-1"), product.id, 2)
    _add(client, auth_headers("7"), product.id, 1)

    response = client.post(
        "/api/v1/cart/merge",
        headers=auth_headers("7"),
        json={"guest_session_id": "guest-api-1"},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Guest cart merged"
    assert response.json()["data"]["items"][0]["quantity"] == 3
    assert db_session.query(Cart).filter(Cart.session_id == "guest-api-1").count() == 0


def test_merge_without_guest_cart(client: TestClient):
    response = client.post(
        "/api/v1/cart/merge",
        headers={**auth_headers("7"), **session_headers("never-shopped")},
        json={},
    )

    assert response.status_code == 200
    assert response.json()["data"] is None


def test_checkout_places_order(client: TestClient, db_session: Session, make_product):
    product = make_product(price="25.00", stock_count=5)
    headers = session_headers("guest-api-1")
    _add(client, headers, product.id, 2)

    response = client.post(
        "/api/v1/cart/checkout",
        headers=headers,
        json={"shipping_address": SHIPPING_ADDRESS, "customer_info": CUSTOMER_INFO, "promo_code": "FREESHIP"},
    )

    assert response.status_code == 201
    order = response.json()["data"]
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["subtotal"] == 50.0
    assert order["shipping_amount"] == 9.99
    assert order["discount_amount"] == 9.99
    assert order["total_amount"] == 54.0
    assert order["items"][0]["quantity"] == 2
    assert db_session.get(Product, product.id).stock_count == 3

    cart = client.get("/api/v1/cart/", headers=headers).json()["data"]
    assert cart["items"] == []


def test_checkout_empty_cart(client: TestClient):
    response = client.post(
        "/api/v1/cart/checkout",
        headers=session_headers("guest-api-1"),
        json={"shipping_address": SHIPPING_ADDRESS},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Cart is empty"


def test_checkout_requires_address(client: TestClient):
    response = client.post("/api/v1/cart/checkout", headers=session_headers("guest-api-1"), json={})

    assert response.status_code == 422
    assert response.json()["message"] == "Validation failed"
