"""Orders API."""
import logging
import uuid
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from storefront.core.auth import get_current_admin
from storefront.core.dependencies import get_order_service
from storefront.core.exceptions import (
    InvalidOrderPayload,
    InvalidTransition,
    OrderNotFound,
    OutOfStock,
    ProductNotFound,
    StockInvariantViolation,
)
from storefront.models.enums import DeliverySchedule, PaymentMethod
from storefront.models.order import Order
from storefront.services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter()


class OrderItemRequest(BaseModel):
    """Элемент заказа в запросе."""

    product_id: uuid.UUID
    quantity: int = Field(gt=0)


class CreateOrderRequest(BaseModel):
    """Запрос на создание заказа."""

    customer_name: str = Field(min_length=3, max_length=100)
    customer_phone: str = Field(pattern=r"^[0-9+\-\s()]+$")
    customer_address: str = Field(min_length=10, max_length=500)
    latitude: float | None = None
    longitude: float | None = None
    delivery_schedule: DeliverySchedule
    payment_method: PaymentMethod
    items: List[OrderItemRequest] = Field(min_length=1)


class UpdateOrderStatusRequest(BaseModel):
    """Запрос на обновление статуса заказа."""

    status: str  # PENDING, APPROVED, REJECTED, SHIPPED, DELIVERED, CANCELLED


class ProductSummary(BaseModel):
    """Краткая информация о товаре в заказе."""

    id: uuid.UUID
    name: str
    price: float


class OrderItemResponse(BaseModel):
    """Элемент заказа в ответе."""

    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    price_at_time: float
    product: ProductSummary | None = None


class OrderResponse(BaseModel):
    """Ответ с информацией о заказе."""

    id: uuid.UUID
    order_number: str
    customer_name: str
    customer_phone: str
    customer_address: str
    latitude: float | None
    longitude: float | None
    delivery_schedule: str
    payment_method: str
    total_amount: float
    status: str
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse]


def to_order_response(order: Order) -> OrderResponse:
    """Собрать ответ по заказу."""
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        customer_address=order.customer_address,
        latitude=float(order.latitude) if order.latitude is not None else None,
        longitude=float(order.longitude) if order.longitude is not None else None,
        delivery_schedule=order.delivery_schedule.value,
        payment_method=order.payment_method.value,
        total_amount=float(order.total_amount),
        status=order.status.value,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price_at_time=float(item.price_at_time),
                product=ProductSummary(
                    id=item.product.id,
                    name=item.product.name,
                    price=float(item.product.price),
                ) if item.product else None,
            )
            for item in order.items
        ],
    )


STATUS_ERRORS = (OrderNotFound, InvalidTransition, StockInvariantViolation)


def raise_for_status_error(e: Exception, order_id: uuid.UUID) -> None:
    """Перевести ошибку смены статуса в HTTP-ответ."""
    if isinstance(e, OrderNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, InvalidTransition):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if isinstance(e, StockInvariantViolation):
        logger.critical(f"Нарушение инварианта склада при смене статуса заказа {order_id}: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Ошибка списания товара, требуется вмешательство оператора",
        )


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    service: OrderService = Depends(get_order_service),
):
    """
    Создать заказ из корзины.

    Доступно без авторизации. Backend проверяет наличие, перечитывает цены
    из БД и вычисляет итоговую сумму. Остатки не списываются.
    """
    try:
        order = await service.create_order(
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            customer_address=request.customer_address,
            delivery_schedule=request.delivery_schedule,
            payment_method=request.payment_method,
            items=[item.model_dump() for item in request.items],
            latitude=request.latitude,
            longitude=request.longitude,
        )
    except ProductNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except (OutOfStock, InvalidOrderPayload) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    return to_order_response(order)


@router.get("/admin/all", response_model=List[OrderResponse])
async def list_orders(
    admin: dict = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    """Получить все заказы (админка)."""
    orders = await service.list_orders()
    return [to_order_response(order) for order in orders]


@router.get("/{order_number}", response_model=OrderResponse)
async def get_order_by_number(
    order_number: str,
    service: OrderService = Depends(get_order_service),
):
    """Получить заказ по номеру (страница подтверждения заказа)."""
    order = await service.get_by_order_number(order_number)

    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Заказ с номером '{order_number}' не найден",
        )

    return to_order_response(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    request: UpdateOrderStatusRequest,
    admin: dict = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    """
    Обновить статус заказа (админка).

    Для подтверждения и отклонения лучше использовать /approve и /reject.
    """
    try:
        order = await service.update_status(order_id, request.status)
    except STATUS_ERRORS as e:
        raise_for_status_error(e, order_id)

    return to_order_response(order)


@router.patch("/{order_id}/approve", response_model=OrderResponse)
async def approve_order(
    order_id: uuid.UUID,
    admin: dict = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    """Подтвердить заказ и списать товар со склада (админка)."""
    try:
        order = await service.approve_order(order_id)
    except STATUS_ERRORS as e:
        raise_for_status_error(e, order_id)

    logger.info(f"Заказ {order.order_number} подтвержден пользователем {admin.get('username')}")
    return to_order_response(order)


@router.patch("/{order_id}/reject", response_model=OrderResponse)
async def reject_order(
    order_id: uuid.UUID,
    admin: dict = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    """Отклонить заказ без изменения остатков (админка)."""
    try:
        order = await service.reject_order(order_id)
    except STATUS_ERRORS as e:
        raise_for_status_error(e, order_id)

    logger.info(f"Заказ {order.order_number} отклонен пользователем {admin.get('username')}")
    return to_order_response(order)


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    admin: dict = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    """Отменить заказ (админка). Списанный товар не возвращается."""
    try:
        order = await service.cancel_order(order_id)
    except STATUS_ERRORS as e:
        raise_for_status_error(e, order_id)

    return to_order_response(order)
