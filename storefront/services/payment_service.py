"""Сервис для работы с платежами."""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.config import settings
from storefront.core.exceptions import InvalidTransition, OrderNotFound
from storefront.core.state_machine import resolve_gateway_status, should_ignore_notification
from storefront.models.enums import OrderStatus, PaymentStatus
from storefront.models.order import Order, OrderItem
from storefront.models.payment import Payment
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import GatewayNotification, PaymentGateway

logger = logging.getLogger(__name__)

ACK = {"status": "ok"}


class PaymentService:
    """Сервис для работы с платежами."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        order_service: OrderService | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.order_service = order_service or OrderService(db)

    @staticmethod
    def generate_gateway_order_id(order: Order) -> str:
        """Новый order_id для шлюза на каждую попытку оплаты."""
        return f"{order.order_number}-{uuid.uuid4().hex[:10]}"

    async def initiate_payment(self, order_id: uuid.UUID) -> dict:
        """
        Инициировать оплату: создать Snap-транзакцию и сохранить ее в БД.

        Если у заказа уже есть активный платеж (PENDING и не истек),
        возвращается он же - повторное нажатие "Оплатить" не создает
        новую транзакцию в шлюзе.

        Returns:
            {
                "snap_token": "...",
                "redirect_url": "https://...",
                "payment_id": UUID,
                "expires_at": datetime,
            }

        Raises:
            OrderNotFound: заказ не найден
            InvalidTransition: заказ уже не ожидает оплаты
            PaymentGatewayError: ошибка шлюза (в БД ничего не записано)
        """
        try:
            stmt = (
                select(Order)
                .options(selectinload(Order.items).selectinload(OrderItem.product))
                .where(Order.id == order_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            order = result.scalar_one_or_none()

            if not order:
                raise OrderNotFound(order_id)

            # Блокируем в том же порядке, что и обработка уведомлений: заказ, затем платеж
            payment = await self._lock_payment(Payment.order_id == order.id)
            now = datetime.utcnow()

            # Отмененный или уже обработанный заказ не оплачивается даже по активному токену
            if order.status != OrderStatus.PENDING:
                raise InvalidTransition(order.status.value, OrderStatus.PENDING.value, "заказ не ожидает оплаты")

            if (
                payment
                and payment.status == PaymentStatus.PENDING
                and payment.expiry_time
                and payment.expiry_time > now
            ):
                logger.info(f"Reusing active payment {payment.id} for order {order.id}")
                response = self._initiation_response(payment)
                await self.db.rollback()  # Снимаем блокировку заказа
                return response

            if payment and payment.status == PaymentStatus.CAPTURE:
                raise InvalidTransition(
                    order.status.value,
                    OrderStatus.PENDING.value,
                    "платеж уже проведен и ожидает проверки",
                )

            gateway_order_id = self.generate_gateway_order_id(order)
            expiry_minutes = settings.payment_expiry_minutes
            expiry_time = now + timedelta(minutes=expiry_minutes)

            # Позиции по зафиксированным ценам - сумма должна совпасть с gross_amount
            item_details = [
                {
                    "id": str(item.product_id),
                    "price": item.price_at_time,
                    "quantity": item.quantity,
                    "name": item.product.name,
                }
                for item in order.items
            ]

            snap = await self.gateway.create_transaction(
                gateway_order_id=gateway_order_id,
                gross_amount=order.total_amount,
                customer={
                    "first_name": order.customer_name,
                    "phone": order.customer_phone,
                },
                items=item_details,
                expiry_minutes=expiry_minutes,
            )

            # Одна запись на заказ: создаем или перезаписываем
            if payment is None:
                payment = Payment(order_id=order.id, gross_amount=order.total_amount)
                self.db.add(payment)

            payment.gateway_order_id = gateway_order_id
            payment.snap_token = snap.token
            payment.snap_redirect_url = snap.redirect_url
            payment.status = PaymentStatus.PENDING
            payment.expiry_time = expiry_time
            payment.gross_amount = order.total_amount
            payment.transaction_id = None
            payment.payment_type = None
            payment.fraud_status = None
            payment.status_code = None

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Payment initiated for order {order.id} -> gateway order id: {gateway_order_id}")
        return self._initiation_response(payment)

    async def _lock_payment(self, criterion) -> Payment | None:
        result = await self.db.execute(
            select(Payment)
            .where(criterion)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _initiation_response(payment: Payment) -> dict:
        return {
            "snap_token": payment.snap_token,
            "redirect_url": payment.snap_redirect_url,
            "payment_id": payment.id,
            "expires_at": payment.expiry_time,
        }

    async def handle_notification(self, body: Any) -> dict:
        """
        Обработать уведомление (webhook) от шлюза.

        Всегда возвращает подтверждение: при ошибке шлюз будет слать
        уведомление повторно, что только усилит проблему порядка доставки.
        Ошибки логируются и не пробрасываются.
        """
        try:
            notification = await self.gateway.parse_notification(body)
        except Exception as e:
            logger.error(f"Не удалось проверить/разобрать уведомление шлюза: {e}", exc_info=True)
            return ACK

        logger.info(
            f"Notification received - order: {notification.gateway_order_id}, "
            f"status: {notification.transaction_status}, fraud: {notification.fraud_status}"
        )

        try:
            await self.process_notification(notification)
        except Exception as e:
            logger.error(
                f"Ошибка обработки уведомления для {notification.gateway_order_id}: {e}",
                exc_info=True,
            )
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.error(f"Не удалось откатить транзакцию: {rollback_error}", exc_info=True)

        return ACK

    async def process_notification(self, notification: GatewayNotification) -> bool:
        """
        Применить проверенное уведомление к платежу и заказу.

        Порядок блокировок: заказ, затем платеж (как и при инициации оплаты).
        Статус платежа и заказа пишутся в одной транзакции, первый переход
        заказа в APPROVED списывает товар.

        Returns:
            True, если уведомление применено; False, если отброшено
        """
        payment_ref = await self.db.execute(
            select(Payment.id, Payment.order_id).where(
                Payment.gateway_order_id == notification.gateway_order_id
            )
        )
        row = payment_ref.one_or_none()
        if row is None:
            # Уведомление по замененной попытке оплаты или чужой транзакции
            logger.warning(f"Payment not found for gateway order id: {notification.gateway_order_id}")
            await self.db.rollback()
            return False

        payment_id, order_id = row
        resolved = resolve_gateway_status(notification.transaction_status, notification.fraud_status)

        try:
            order = await self.order_service.lock_order(order_id)
            payment = await self._lock_payment(Payment.id == payment_id)

            # Пока ждали блокировку, могла начаться новая попытка оплаты
            if payment.gateway_order_id != notification.gateway_order_id:
                logger.warning(
                    f"Notification for superseded attempt {notification.gateway_order_id} ignored, "
                    f"payment {payment.id} is now {payment.gateway_order_id}"
                )
                await self.db.rollback()
                return False

            # Идемпотентность + защита от запоздавших уведомлений
            if should_ignore_notification(payment.status, resolved.payment_status, payment.fraud_status):
                if payment.status == resolved.payment_status:
                    logger.info(f"Duplicate notification for payment {payment.id}: {payment.status.value}")
                else:
                    logger.warning(
                        f"Ignoring notification - current: {payment.status.value}, "
                        f"incoming: {resolved.payment_status.value}"
                    )
                await self.db.rollback()
                return False

            update_result = await self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == payment.status)
                .values(
                    status=resolved.payment_status,
                    transaction_id=notification.transaction_id,
                    payment_type=notification.payment_type,
                    fraud_status=notification.fraud_status,
                    status_code=notification.status_code,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if update_result.rowcount != 1:
                logger.warning(f"Payment {payment.id} changed concurrently, notification skipped")
                await self.db.rollback()
                return False

            await self.order_service.sync_with_payment(order, resolved.order_status)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Payment {payment.id} updated to {resolved.payment_status.value}, "
            f"order {order.id} is {order.status.value}"
        )
        return True

    async def get_payment_status(self, order_id: uuid.UUID) -> Payment | None:
        """Получить платеж заказа."""
        stmt = select(Payment).where(Payment.order_id == order_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def poll_gateway_status(self, payment: Payment) -> str | None:
        """
        Спросить у шлюза текущий статус ожидающего платежа.

        В БД не пишем - источник истины вебхук. Ошибки шлюза игнорируются.
        """
        if payment.status != PaymentStatus.PENDING or not payment.gateway_order_id:
            return None
        try:
            return await self.gateway.get_transaction_status(payment.gateway_order_id)
        except Exception as e:
            logger.warning(f"Не удалось получить статус {payment.gateway_order_id} из шлюза: {e}")
            return None
