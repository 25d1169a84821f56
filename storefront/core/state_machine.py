"""
Машины состояний заказа и платежа.

Здесь же - сопоставление статусов Midtrans с внутренними статусами.
Все пути изменения статуса заказа (вебхук, ручное подтверждение,
админский PATCH) проверяются одной и той же таблицей переходов.
"""
import logging
from typing import NamedTuple

from storefront.core.exceptions import InvalidTransition
from storefront.models.enums import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)


# Разрешенные переходы статуса заказа
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.CANCELLED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.REJECTED: frozenset(),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_ORDER_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)

# Статусы, в которых товар уже списан (или заказ прошел через подтверждение)
FULFILLMENT_STATUSES = frozenset({OrderStatus.APPROVED, OrderStatus.SHIPPED, OrderStatus.DELIVERED})

TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.SETTLEMENT,
    PaymentStatus.CANCEL,
    PaymentStatus.EXPIRE,
    PaymentStatus.FAILURE,
    PaymentStatus.DENY,
})

FRAUD_ACCEPT = "accept"


class ResolvedStatus(NamedTuple):
    """Пара статусов, в которую переводит уведомление шлюза."""

    payment_status: PaymentStatus
    order_status: OrderStatus


def parse_order_status(value: str | OrderStatus) -> OrderStatus:
    """Привести строку к OrderStatus, неизвестные значения отклоняются."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in OrderStatus)
        raise InvalidTransition(None, str(value), f"неизвестный статус, допустимые: {allowed}") from None


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Есть ли переход current -> target в таблице."""
    return target in ORDER_TRANSITIONS[current]


def validate_order_transition(current: OrderStatus, target: str | OrderStatus) -> OrderStatus:
    """
    Проверить переход статуса заказа.

    Returns:
        Целевой статус как OrderStatus

    Raises:
        InvalidTransition: статус неизвестен или переход запрещен
    """
    target_status = parse_order_status(target)
    if not can_transition(current, target_status):
        if current in TERMINAL_ORDER_STATUSES:
            reason = f"заказ в конечном статусе {current.value}"
        else:
            reason = None
        raise InvalidTransition(current.value, target_status.value, reason)
    return target_status


def is_first_approval(current: OrderStatus, target: OrderStatus) -> bool:
    """Переход впервые выводит заказ в APPROVED (нужно списать товар)."""
    return target == OrderStatus.APPROVED and current not in FULFILLMENT_STATUSES


def resolve_gateway_status(transaction_status: str | None, fraud_status: str | None = None) -> ResolvedStatus:
    """
    Сопоставить transaction_status + fraud_status Midtrans с внутренними статусами.

    Неизвестный статус считается PENDING (с предупреждением в логе).
    """
    status = (transaction_status or "").lower()

    if status == "capture":
        # Карта: capture бывает accept или challenge (ждем ручной проверки в Midtrans)
        if (fraud_status or "").lower() == FRAUD_ACCEPT:
            return ResolvedStatus(PaymentStatus.CAPTURE, OrderStatus.APPROVED)
        return ResolvedStatus(PaymentStatus.CAPTURE, OrderStatus.PENDING)

    mapping = {
        "settlement": ResolvedStatus(PaymentStatus.SETTLEMENT, OrderStatus.APPROVED),
        "pending": ResolvedStatus(PaymentStatus.PENDING, OrderStatus.PENDING),
        "deny": ResolvedStatus(PaymentStatus.DENY, OrderStatus.REJECTED),
        "cancel": ResolvedStatus(PaymentStatus.CANCEL, OrderStatus.CANCELLED),
        "expire": ResolvedStatus(PaymentStatus.EXPIRE, OrderStatus.CANCELLED),
        "failure": ResolvedStatus(PaymentStatus.FAILURE, OrderStatus.REJECTED),
    }
    resolved = mapping.get(status)
    if resolved is None:
        logger.warning(f"Неизвестный transaction_status от шлюза: {transaction_status!r}")
        return ResolvedStatus(PaymentStatus.PENDING, OrderStatus.PENDING)
    return resolved


def is_payment_latched(current: PaymentStatus, fraud_status: str | None) -> bool:
    """Платеж в конечном статусе или в принятом capture."""
    if current in TERMINAL_PAYMENT_STATUSES:
        return True
    return current == PaymentStatus.CAPTURE and (fraud_status or "").lower() == FRAUD_ACCEPT


def should_ignore_notification(
    current: PaymentStatus,
    incoming: PaymentStatus,
    current_fraud_status: str | None = None,
) -> bool:
    """
    Нужно ли отбросить уведомление (идемпотентность + порядок доставки).

    Конечный статус никогда не перезаписывается: повтор того же статуса -
    no-op, любой другой - запоздавшее уведомление. Принятый capture может
    перейти только в settlement. Из незавершенных статусов применяется всё.
    """
    if current in TERMINAL_PAYMENT_STATUSES:
        return True
    if is_payment_latched(current, current_fraud_status):
        return incoming != PaymentStatus.SETTLEMENT
    return False
