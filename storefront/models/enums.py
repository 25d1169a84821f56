"""Перечисления статусов и справочных значений."""
import enum


class OrderStatus(str, enum.Enum):
    """Статус заказа."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    """Внутренний статус платежа (не зависит от словаря шлюза)."""

    PENDING = "PENDING"
    CAPTURE = "CAPTURE"
    SETTLEMENT = "SETTLEMENT"
    CANCEL = "CANCEL"
    EXPIRE = "EXPIRE"
    FAILURE = "FAILURE"
    DENY = "DENY"


class DeliverySchedule(str, enum.Enum):
    """Время доставки."""

    PAGI = "pagi"  # утро
    SIANG = "siang"  # день
    SORE = "sore"  # вечер


class PaymentMethod(str, enum.Enum):
    """Способ оплаты."""

    COD = "cod"
    TRANSFER = "transfer"
    EWALLET = "ewallet"
    MIDTRANS = "midtrans"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Значения перечисления для хранения в БД."""
    return [member.value for member in enum_cls]
