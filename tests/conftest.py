"""Общие фикстуры тестов."""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MIDTRANS_SERVER_KEY", "SB-Mid-server-test")
os.environ.setdefault("SECRET_KEY", "test-secret")

from decimal import Decimal  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from storefront.core.exceptions import InvalidNotification  # noqa: E402
from storefront.database import Base  # noqa: E402
from storefront.models import Order, Payment, Product  # noqa: E402
from storefront.services.order_service import OrderService  # noqa: E402
from storefront.services.payment_gateway import GatewayNotification, SnapToken  # noqa: E402
from storefront.services.payment_service import PaymentService  # noqa: E402


class FakeGateway:
    """Платежный шлюз в памяти."""

    def __init__(self):
        self.created: list[dict[str, Any]] = []
        self.error: Exception | None = None
        self.transaction_status = "pending"

    async def create_transaction(self, gateway_order_id, gross_amount, customer, items, expiry_minutes):
        if self.error:
            raise self.error
        self.created.append({
            "gateway_order_id": gateway_order_id,
            "gross_amount": gross_amount,
            "customer": customer,
            "items": items,
            "expiry_minutes": expiry_minutes,
        })
        n = len(self.created)
        return SnapToken(token=f"snap-token-{n}", redirect_url=f"https://snap.test/v2/vtweb/{gateway_order_id}")

    async def parse_notification(self, body):
        if not isinstance(body, dict) or "order_id" not in body or "transaction_status" not in body:
            raise InvalidNotification("malformed notification")
        return GatewayNotification(
            gateway_order_id=body["order_id"],
            transaction_status=body["transaction_status"],
            fraud_status=body.get("fraud_status"),
            transaction_id=body.get("transaction_id"),
            payment_type=body.get("payment_type"),
            status_code=body.get("status_code"),
        )

    async def get_transaction_status(self, gateway_order_id):
        if self.error:
            raise self.error
        return self.transaction_status


def order_payload(product_id, quantity: int = 2, **overrides) -> dict:
    """Данные заказа с одной позицией."""
    payload = {
        "customer_name": "Budi Santoso",
        "customer_phone": "+62 812-3456-7890",
        "customer_address": "Jl. Merdeka No. 10, Jakarta Pusat",
        "delivery_schedule": "pagi",
        "payment_method": "midtrans",
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    payload.update(overrides)
    return payload


def notification(gateway_order_id: str, transaction_status: str, fraud_status: str | None = None) -> dict:
    """Тело уведомления шлюза."""
    return {
        "order_id": gateway_order_id,
        "transaction_status": transaction_status,
        "fraud_status": fraud_status,
        "transaction_id": f"tx-{transaction_status}",
        "payment_type": "bank_transfer",
        "status_code": "200",
    }


@pytest.fixture
async def engine(tmp_path):
    # Файловая SQLite: у каждой сессии свое подключение, как в проде
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def order_service(db):
    return OrderService(db)


@pytest.fixture
def payment_service(db, gateway):
    return PaymentService(db, gateway)


@pytest.fixture
async def product(session_factory):
    async with session_factory() as session:
        product = Product(name="Kopi Arabika 250g", price=Decimal("10.00"), stock=5)
        session.add(product)
        await session.commit()
        return product


@pytest.fixture
async def order(order_service, product):
    return await order_service.create_order(**order_payload(product.id, quantity=2))


@pytest.fixture
def read_stock(session_factory):
    async def _read(product_id) -> int:
        async with session_factory() as session:
            return await session.scalar(select(Product.stock).where(Product.id == product_id))
    return _read


@pytest.fixture
def read_order(session_factory):
    async def _read(order_id) -> Order:
        async with session_factory() as session:
            return await session.scalar(select(Order).where(Order.id == order_id))
    return _read


@pytest.fixture
def read_payment(session_factory):
    async def _read(order_id) -> Payment | None:
        async with session_factory() as session:
            return await session.scalar(select(Payment).where(Payment.order_id == order_id))
    return _read
