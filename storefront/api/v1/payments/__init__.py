"""Payments API."""
import json
import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel

from storefront.core.dependencies import get_payment_service
from storefront.core.exceptions import InvalidTransition, OrderNotFound, PaymentGatewayError
from storefront.services.payment_service import ACK, PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


class InitiatePaymentResponse(BaseModel):
    """Ответ на инициацию оплаты."""

    snap_token: str
    redirect_url: str
    payment_id: uuid.UUID
    expires_at: datetime


class PaymentStatusResponse(BaseModel):
    """Статус платежа по заказу."""

    id: uuid.UUID
    order_id: uuid.UUID
    gateway_order_id: str
    status: str
    gross_amount: float
    payment_type: str | None
    transaction_id: str | None
    fraud_status: str | None
    expiry_time: datetime | None
    gateway_status: str | None = None  # Статус из шлюза (только для PENDING, не из БД)


@router.post("/initiate/{order_id}", response_model=InitiatePaymentResponse)
async def initiate_payment(
    order_id: uuid.UUID,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Инициировать оплату (кнопка "Оплатить").

    Возвращает snap_token для Snap popup или redirect_url.
    Повторный вызов при активном платеже возвращает тот же токен.
    """
    try:
        result = await service.initiate_payment(order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    except PaymentGatewayError as e:
        logger.error(f"Failed to initiate payment for order {order_id}: {e.message}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    return InitiatePaymentResponse(**result)


@router.post("/notification", status_code=status.HTTP_200_OK)
async def payment_notification(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Webhook для уведомлений Midtrans.

    URL указывается в Midtrans Dashboard (Payment Notification URL).
    Без авторизации, подпись проверяется в клиенте шлюза.
    Всегда отвечает 200, иначе Midtrans будет повторять уведомление.
    """
    body = await request.body()
    try:
        event_data = json.loads(body) if body else None
    except ValueError as e:
        logger.error(f"❌ Failed to parse notification JSON: {e}")
        return ACK

    if isinstance(event_data, dict):
        logger.info(
            f"Webhook received: order_id={event_data.get('order_id')}, "
            f"transaction_status={event_data.get('transaction_status')}"
        )

    return await service.handle_notification(event_data)


@router.get("/status/{order_id}", response_model=PaymentStatusResponse | None)
async def get_payment_status(
    order_id: uuid.UUID,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Статус оплаты заказа (опрос после возврата со страницы Midtrans).

    Пока платеж PENDING, дополнительно спрашиваем шлюз; в БД ничего не пишем.
    """
    payment = await service.get_payment_status(order_id)
    if payment is None:
        return None

    gateway_status = await service.poll_gateway_status(payment)

    return PaymentStatusResponse(
        id=payment.id,
        order_id=payment.order_id,
        gateway_order_id=payment.gateway_order_id,
        status=payment.status.value,
        gross_amount=float(payment.gross_amount),
        payment_type=payment.payment_type,
        transaction_id=payment.transaction_id,
        fraud_status=payment.fraud_status,
        expiry_time=payment.expiry_time,
        gateway_status=gateway_status,
    )
