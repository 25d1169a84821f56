"""Доменные исключения магазина."""
import logging
import uuid
from typing import Any

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Базовое исключение приложения."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- Ошибки валидации (возвращаются клиенту при создании заказа) ---


class ProductNotFound(StorefrontError):
    """Товар не найден или неактивен."""

    def __init__(self, product_id: uuid.UUID):
        self.product_id = product_id
        super().__init__(f"Товар с ID '{product_id}' не найден или неактивен")


class OutOfStock(StorefrontError):
    """Недостаточно товара на складе на момент проверки."""

    def __init__(self, product_id: uuid.UUID, product_name: str, available: int, requested: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Недостаточно товара '{product_name}' на складе. "
            f"Доступно: {available}, запрошено: {requested}"
        )


class InvalidOrderPayload(StorefrontError):
    """Некорректные данные заказа (пустая корзина, количество <= 0)."""


class OrderNotFound(StorefrontError):
    """Заказ не найден."""

    def __init__(self, order_ref: uuid.UUID | str):
        self.order_ref = order_ref
        super().__init__(f"Заказ '{order_ref}' не найден")


# --- Нарушения машины состояний ---


class InvalidTransition(StorefrontError):
    """Недопустимый переход статуса заказа."""

    def __init__(self, current: str | None, target: str, reason: str | None = None):
        self.current = current
        self.target = target
        message = f"Недопустимый переход статуса заказа: {current} -> {target}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


# --- Внешние зависимости ---


class PaymentGatewayError(StorefrontError):
    """Ошибка обращения к платежному шлюзу."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        gateway_response: Any | None = None,
    ):
        self.status_code = status_code
        self.gateway_response = gateway_response
        super().__init__(f"Ошибка платежного шлюза: {message}")


class InvalidNotification(StorefrontError):
    """Уведомление шлюза не прошло проверку подписи или не разобрано."""


# --- Нарушение инварианта склада ---


class StockInvariantViolation(StorefrontError):
    """
    Остаток ушел бы в минус при списании.

    Это не "нет в наличии" для покупателя, а сигнал о баге:
    и проверка при создании заказа, и атомарность подтверждения были обойдены.
    """

    def __init__(self, product_id: uuid.UUID, required: int, order_id: uuid.UUID | None = None):
        self.product_id = product_id
        self.required = required
        self.order_id = order_id
        super().__init__(
            f"Нарушение инварианта склада: товар {product_id}, требуется {required}, "
            f"заказ {order_id}"
        )
        logger.critical(self.message)
