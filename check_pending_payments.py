"""Скрипт для ручной сверки ожидающих платежей со шлюзом (только отчет, БД не меняется)."""
import asyncio
import logging

from sqlalchemy import select

from storefront.database import AsyncSessionLocal, engine
from storefront.models.enums import PaymentStatus
from storefront.models.payment import Payment
from storefront.services.payment_gateway import MidtransService
from storefront.services.payment_service import PaymentService

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Сравнить статусы PENDING-платежей в БД со статусами в Midtrans."""
    try:
        async with AsyncSessionLocal() as db:
            service = PaymentService(db, MidtransService())
            result = await db.execute(select(Payment).where(Payment.status == PaymentStatus.PENDING))
            payments = result.scalars().all()
            logger.info(f"Ожидающих платежей: {len(payments)}")

            for payment in payments:
                gateway_status = await service.poll_gateway_status(payment)
                if gateway_status and gateway_status != "pending":
                    logger.warning(
                        f"Расхождение: платеж {payment.id} ({payment.gateway_order_id}) в БД PENDING, "
                        f"в шлюзе '{gateway_status}' - уведомление не дошло?"
                    )
    except Exception as e:
        logger.error(f"Ошибка при сверке платежей: {e}", exc_info=True)
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
