"""Dependencies для FastAPI."""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import MidtransService, PaymentGateway
from storefront.services.payment_service import PaymentService


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Клиент платежного шлюза (один на процесс)."""
    return MidtransService()


async def get_order_service(db: AsyncSession = Depends(get_db)) -> OrderService:
    """Сервис заказов для текущего запроса."""
    return OrderService(db)


async def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentService:
    """Сервис платежей для текущего запроса."""
    return PaymentService(db, gateway)
