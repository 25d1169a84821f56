"""Модель платежа."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import String, Numeric, ForeignKey, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base
from storefront.models.enums import PaymentStatus

if TYPE_CHECKING:
    from storefront.models.order import Order


class Payment(Base):
    """Модель платежа. Одна запись на заказ, перезаписывается при повторной попытке."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id"), unique=True, nullable=False)
    gateway_order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)  # order_id в Midtrans
    gross_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, native_enum=False, length=20),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    snap_token: Mapped[str | None] = mapped_column(String, nullable=True)
    snap_redirect_url: Mapped[str | None] = mapped_column(String, nullable=True)
    expiry_time: Mapped[datetime | None] = mapped_column(nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_type: Mapped[str | None] = mapped_column(String, nullable=True)
    fraud_status: Mapped[str | None] = mapped_column(String, nullable=True)
    status_code: Mapped[str | None] = mapped_column(String(8), nullable=True)  # Для аудита
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="payment")
