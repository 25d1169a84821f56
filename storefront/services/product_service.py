"""Сервис для работы с продуктами и складскими остатками."""
import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import ProductNotFound, StockInvariantViolation
from storefront.models.product import Product

logger = logging.getLogger(__name__)


class ProductService:
    """Сервис для работы с продуктами."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_product(self, product_id: UUID, active_only: bool = True) -> Product:
        """
        Получить продукт по ID.

        Raises:
            ProductNotFound: продукт не найден или неактивен
        """
        stmt = select(Product).where(Product.id == product_id)
        if active_only:
            stmt = stmt.where(Product.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        product = result.scalar_one_or_none()

        if not product:
            raise ProductNotFound(product_id)
        return product

    @staticmethod
    def has_sufficient_stock(product: Product, quantity: int) -> bool:
        """Хватает ли товара (только чтение, без резервирования)."""
        return product.stock >= quantity

    async def decrement_stock(self, product_id: UUID, quantity: int, order_id: UUID | None = None) -> int:
        """
        Списать товар со склада.

        Списание - один условный UPDATE (stock >= quantity), поэтому
        параллельные списания не уводят остаток в минус. Коммит делает
        вызывающий код, списание входит в его транзакцию.

        Returns:
            Новый остаток

        Raises:
            StockInvariantViolation: товара недостаточно на момент списания
        """
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount != 1:
            raise StockInvariantViolation(product_id, quantity, order_id)

        new_stock = await self.db.scalar(select(Product.stock).where(Product.id == product_id))

        logger.info(
            f"Списано {quantity} единиц товара {product_id} со склада (заказ {order_id}). "
            f"Остаток: {new_stock}"
        )
        return new_stock
