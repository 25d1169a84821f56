"""Сервис для работы с заказами."""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from storefront.core.exceptions import InvalidOrderPayload, InvalidTransition, OrderNotFound, OutOfStock
from storefront.core.state_machine import (
    can_transition,
    is_first_approval,
    validate_order_transition,
)
from storefront.models.enums import DeliverySchedule, OrderStatus, PaymentMethod
from storefront.models.order import Order, OrderItem
from storefront.services.product_service import ProductService

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class OrderService:
    """Сервис для работы с заказами."""

    def __init__(self, db: AsyncSession, product_service: ProductService | None = None):
        self.db = db
        self.product_service = product_service or ProductService(db)

    @staticmethod
    def generate_order_number() -> str:
        """
        Сгенерировать номер заказа.

        Формат: ORD-{UTC yyyymmddHHMMSS}-{8 hex}
        """
        return f"ORD-{datetime.utcnow():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8].upper()}"

    async def create_order(
        self,
        customer_name: str,
        customer_phone: str,
        customer_address: str,
        delivery_schedule: DeliverySchedule | str,
        payment_method: PaymentMethod | str,
        items: list[dict],
        latitude: Decimal | float | None = None,
        longitude: Decimal | float | None = None,
    ) -> Order:
        """
        Создать заказ.

        Проверяет наличие товаров (только чтение, без резервирования),
        фиксирует цены на момент заказа и вычисляет итоговую сумму.
        Остатки на складе НЕ меняются - списание только при подтверждении.
        """
        if not items:
            raise InvalidOrderPayload("Заказ должен содержать хотя бы один товар")

        # Объединяем повторяющиеся позиции
        quantities: dict[UUID, int] = {}
        for item in items:
            product_id = UUID(str(item["product_id"]))
            quantity = int(item["quantity"])
            if quantity <= 0:
                raise InvalidOrderPayload(f"Некорректное количество для товара '{product_id}': {quantity}")
            quantities[product_id] = quantities.get(product_id, 0) + quantity

        # Валидируем товары и перечитываем цены (не доверяем клиенту)
        total_amount = Decimal("0")
        order_items_data = []
        for product_id, quantity in quantities.items():
            product = await self.product_service.get_product(product_id)

            if not self.product_service.has_sufficient_stock(product, quantity):
                raise OutOfStock(product.id, product.name, product.stock, quantity)

            total_amount += product.price * quantity
            order_items_data.append({
                "product_id": product.id,
                "quantity": quantity,
                "price_at_time": product.price,
            })

        order = Order(
            order_number=self.generate_order_number(),
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_address=customer_address,
            latitude=Decimal(str(latitude)) if latitude is not None else None,
            longitude=Decimal(str(longitude)) if longitude is not None else None,
            delivery_schedule=DeliverySchedule(delivery_schedule),
            payment_method=PaymentMethod(payment_method),
            total_amount=total_amount.quantize(CENT),
            status=OrderStatus.PENDING,
        )

        try:
            self.db.add(order)
            await self.db.flush()  # Получаем ID заказа

            for item_data in order_items_data:
                self.db.add(OrderItem(order_id=order.id, **item_data))

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Создан заказ {order.order_number} ({order.id}) на сумму {order.total_amount}")
        return await self.get_by_id(order.id)

    async def get_by_id(self, order_id: UUID) -> Order | None:
        """Получить заказ по ID вместе с товарами и платежом."""
        stmt = (
            select(Order)
            .options(
                selectinload(Order.items).selectinload(OrderItem.product),
                selectinload(Order.payment),
            )
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_order_number(self, order_number: str) -> Order | None:
        """Получить заказ по номеру (страница подтверждения заказа)."""
        stmt = (
            select(Order)
            .options(
                selectinload(Order.items).selectinload(OrderItem.product),
                selectinload(Order.payment),
            )
            .where(Order.order_number == order_number)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_orders(self) -> list[Order]:
        """Получить все заказы (для админки), новые сверху."""
        stmt = (
            select(Order)
            .options(selectinload(Order.items).selectinload(OrderItem.product))
            .order_by(Order.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def lock_order(self, order_id: UUID) -> Order | None:
        """Загрузить заказ с блокировкой строки (SELECT ... FOR UPDATE)."""
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def transition(self, order: Order, target: OrderStatus) -> bool:
        """
        Записать новый статус заказа в текущей транзакции (без коммита).

        Запись - compare-and-set по статусу, который видел вызывающий код.
        При первом переходе в APPROVED в той же транзакции списывается товар;
        stock_deducted_at защищает от повторного списания.

        Returns:
            False, если статус успел измениться параллельным запросом
        """
        current = order.status
        now = datetime.utcnow()
        deduct_stock = is_first_approval(current, target) and order.stock_deducted_at is None

        stmt = update(Order).where(Order.id == order.id, Order.status == current)
        values = {"status": target, "updated_at": now}
        if deduct_stock:
            stmt = stmt.where(Order.stock_deducted_at.is_(None))
            values["stock_deducted_at"] = now

        result = await self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                f"Статус заказа {order.id} изменен параллельно, переход {current.value} -> {target.value} пропущен"
            )
            return False

        # UPDATE идет мимо сессии - переносим значения в объект без пометки dirty
        for key, value in values.items():
            set_committed_value(order, key, value)

        if deduct_stock:
            for item in order.items:
                await self.product_service.decrement_stock(item.product_id, item.quantity, order.id)

        logger.info(f"Заказ {order.id}: {current.value} -> {target.value}")
        return True

    async def sync_with_payment(self, order: Order, target: OrderStatus) -> bool:
        """
        Привести статус заказа к статусу платежа (путь вебхука, без коммита).

        Тот же статус - ничего не делаем. Недопустимый переход (например,
        заказ уже SHIPPED, а пришел settlement) не применяется, а логируется.
        """
        if order.status == target:
            return False
        if not can_transition(order.status, target):
            logger.warning(
                f"Заказ {order.id}: переход {order.status.value} -> {target.value} по уведомлению шлюза "
                f"недопустим, статус заказа не меняется"
            )
            return False
        return await self.transition(order, target)

    async def _change_status(
        self,
        order_id: UUID,
        target: OrderStatus | str,
        required_current: OrderStatus | None = None,
    ) -> Order:
        """Проверить и применить переход статуса в отдельной транзакции."""
        try:
            order = await self.lock_order(order_id)
            if not order:
                raise OrderNotFound(order_id)

            if required_current is not None and order.status != required_current:
                raise InvalidTransition(
                    order.status.value,
                    str(getattr(target, "value", target)),
                    f"допустимо только из статуса {required_current.value}",
                )

            target_status = validate_order_transition(order.status, target)
            if not await self.transition(order, target_status):
                raise InvalidTransition(
                    order.status.value,
                    target_status.value,
                    "статус заказа изменен параллельным запросом",
                )

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get_by_id(order_id)

    async def update_status(self, order_id: UUID, status: OrderStatus | str) -> Order:
        """
        Обновить статус заказа (админка).

        Переход проверяется таблицей переходов; первый переход в APPROVED
        списывает товар так же, как approve_order.

        Raises:
            OrderNotFound, InvalidTransition
        """
        return await self._change_status(order_id, status)

    async def approve_order(self, order_id: UUID) -> Order:
        """
        Подтвердить заказ и списать товар со склада.

        Только из PENDING. Списание атомарно с записью статуса и необратимо.
        """
        order = await self._change_status(order_id, OrderStatus.APPROVED, required_current=OrderStatus.PENDING)
        logger.info(f"Заказ {order.order_number} подтвержден вручную")
        return order

    async def reject_order(self, order_id: UUID) -> Order:
        """Отклонить заказ. Только из PENDING, склад не трогаем."""
        order = await self._change_status(order_id, OrderStatus.REJECTED, required_current=OrderStatus.PENDING)
        logger.info(f"Заказ {order.order_number} отклонен вручную")
        return order

    async def cancel_order(self, order_id: UUID) -> Order:
        """
        Отменить заказ (админка).

        Списанный товар на склад не возвращается.
        """
        return await self._change_status(order_id, OrderStatus.CANCELLED)
