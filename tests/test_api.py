"""Тесты HTTP API заказов и платежей."""
import uuid

import httpx
import pytest

from conftest import notification, order_payload
from storefront.core.dependencies import get_payment_gateway
from storefront.core.exceptions import PaymentGatewayError
from storefront.core.security import create_access_token
from storefront.database import get_db
from storefront.main import app


@pytest.fixture
async def client(session_factory, gateway):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def auth_headers(role: str = "ADMIN") -> dict:
    token = create_access_token({"username": "operator", "role": role})
    return {"Authorization": f"Bearer {token}"}


def as_json(payload: dict) -> dict:
    payload = dict(payload)
    payload["items"] = [
        {"product_id": str(item["product_id"]), "quantity": item["quantity"]}
        for item in payload["items"]
    ]
    return payload


async def create_order(client, product, quantity: int = 2) -> dict:
    response = await client.post("/api/v1/orders", json=as_json(order_payload(product.id, quantity=quantity)))
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# --- Заказы ---


async def test_create_order(client, product, read_stock):
    data = await create_order(client, product)

    assert data["status"] == "PENDING"
    assert data["total_amount"] == 20.0
    assert data["delivery_schedule"] == "pagi"
    assert data["payment_method"] == "midtrans"
    assert data["items"][0]["price_at_time"] == 10.0
    assert data["items"][0]["product"]["name"] == "Kopi Arabika 250g"
    assert await read_stock(product.id) == 5


@pytest.mark.parametrize(
    "overrides",
    [
        {"customer_name": "Bu"},
        {"customer_phone": "call me"},
        {"customer_address": "Jakarta"},
        {"delivery_schedule": "malam"},
        {"payment_method": "crypto"},
        {"items": []},
    ],
)
async def test_create_order_validation(client, product, overrides):
    payload = as_json(order_payload(product.id))
    payload.update(overrides)

    response = await client.post("/api/v1/orders", json=payload)

    assert response.status_code == 422


async def test_create_order_non_positive_quantity(client, product):
    response = await client.post("/api/v1/orders", json=as_json(order_payload(product.id, quantity=0)))
    assert response.status_code == 422


async def test_create_order_out_of_stock(client, product):
    response = await client.post("/api/v1/orders", json=as_json(order_payload(product.id, quantity=6)))
    assert response.status_code == 400


async def test_create_order_unknown_product(client):
    response = await client.post("/api/v1/orders", json=as_json(order_payload(uuid.uuid4())))
    assert response.status_code == 404


async def test_get_order_by_number(client, product):
    created = await create_order(client, product)

    response = await client.get(f"/api/v1/orders/{created['order_number']}")
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]

    response = await client.get("/api/v1/orders/ORD-00000000000000-DEADBEEF")
    assert response.status_code == 404


async def test_admin_endpoints_require_token(client, product):
    created = await create_order(client, product)

    response = await client.patch(f"/api/v1/orders/{created['id']}/approve")
    assert response.status_code in (401, 403)

    response = await client.patch(
        f"/api/v1/orders/{created['id']}/approve",
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401

    response = await client.patch(f"/api/v1/orders/{created['id']}/approve", headers=auth_headers("CUSTOMER"))
    assert response.status_code == 403


async def test_approve_twice(client, product, read_stock):
    created = await create_order(client, product)

    response = await client.patch(f"/api/v1/orders/{created['id']}/approve", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"

    response = await client.patch(f"/api/v1/orders/{created['id']}/approve", headers=auth_headers())
    assert response.status_code == 409
    assert await read_stock(product.id) == 3


async def test_reject_and_forbidden_resurrection(client, product, read_stock):
    created = await create_order(client, product)

    response = await client.patch(f"/api/v1/orders/{created['id']}/reject", headers=auth_headers("SUPER_ADMIN"))
    assert response.status_code == 200
    assert response.json()["status"] == "REJECTED"

    response = await client.patch(
        f"/api/v1/orders/{created['id']}/status",
        json={"status": "APPROVED"},
        headers=auth_headers(),
    )
    assert response.status_code == 409
    assert await read_stock(product.id) == 5


async def test_update_status_and_cancel(client, product):
    created = await create_order(client, product)
    url = f"/api/v1/orders/{created['id']}"

    response = await client.patch(f"{url}/status", json={"status": "LOST"}, headers=auth_headers())
    assert response.status_code == 409

    for status in ("APPROVED", "SHIPPED"):
        response = await client.patch(f"{url}/status", json={"status": status}, headers=auth_headers())
        assert response.status_code == 200
        assert response.json()["status"] == status

    response = await client.patch(f"{url}/cancel", headers=auth_headers())
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"


async def test_status_change_for_missing_order(client):
    response = await client.patch(f"/api/v1/orders/{uuid.uuid4()}/approve", headers=auth_headers())
    assert response.status_code == 404


async def test_list_orders(client, product):
    await create_order(client, product)
    await create_order(client, product, quantity=1)

    response = await client.get("/api/v1/orders/admin/all", headers=auth_headers())

    assert response.status_code == 200
    assert len(response.json()) == 2


# --- Платежи ---


async def test_initiate_payment_is_idempotent(client, gateway, product):
    created = await create_order(client, product)

    first = await client.post(f"/api/v1/payments/initiate/{created['id']}")
    second = await client.post(f"/api/v1/payments/initiate/{created['id']}")

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["snap_token"] == second.json()["snap_token"]
    assert len(gateway.created) == 1


async def test_initiate_payment_errors(client, gateway, product):
    response = await client.post(f"/api/v1/payments/initiate/{uuid.uuid4()}")
    assert response.status_code == 404

    created = await create_order(client, product)
    gateway.error = PaymentGatewayError("Snap API вернул 500", status_code=500)
    response = await client.post(f"/api/v1/payments/initiate/{created['id']}")
    assert response.status_code == 502

    gateway.error = None
    await client.patch(f"/api/v1/orders/{created['id']}/approve", headers=auth_headers())
    response = await client.post(f"/api/v1/payments/initiate/{created['id']}")
    assert response.status_code == 409


async def test_notification_settles_order(client, product, read_stock):
    created = await create_order(client, product)
    await client.post(f"/api/v1/payments/initiate/{created['id']}")

    status_response = await client.get(f"/api/v1/payments/status/{created['id']}")
    gateway_order_id = status_response.json()["gateway_order_id"]

    response = await client.post(
        "/api/v1/payments/notification",
        json=notification(gateway_order_id, "settlement"),
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

    order = (await client.get(f"/api/v1/orders/{created['order_number']}")).json()
    assert order["status"] == "APPROVED"
    assert await read_stock(product.id) == 3

    payment = (await client.get(f"/api/v1/payments/status/{created['id']}")).json()
    assert payment["status"] == "SETTLEMENT"
    assert payment["gateway_status"] is None


@pytest.mark.parametrize(
    "content",
    [b"", b"not json", b"[1, 2, 3]", b'{"order_id": "ORD-UNKNOWN", "transaction_status": "settlement"}'],
)
async def test_notification_always_acknowledged(client, content):
    response = await client.post(
        "/api/v1/payments/notification",
        content=content,
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_payment_status(client, gateway, product):
    created = await create_order(client, product)

    response = await client.get(f"/api/v1/payments/status/{created['id']}")
    assert response.status_code == 200
    assert response.json() is None

    await client.post(f"/api/v1/payments/initiate/{created['id']}")
    gateway.transaction_status = "pending"

    data = (await client.get(f"/api/v1/payments/status/{created['id']}")).json()
    assert data["status"] == "PENDING"
    assert data["gross_amount"] == 20.0
    assert data["gateway_status"] == "pending"
