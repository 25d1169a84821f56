"""Модели базы данных."""
from storefront.models.enums import OrderStatus, PaymentStatus, DeliverySchedule, PaymentMethod
from storefront.models.product import Product
from storefront.models.order import Order, OrderItem
from storefront.models.payment import Payment

__all__ = [
    "Product",
    "Order",
    "OrderItem",
    "Payment",
    "OrderStatus",
    "PaymentStatus",
    "DeliverySchedule",
    "PaymentMethod",
]
