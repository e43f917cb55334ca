"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import PaymentRecordModel
from .order import OrderModel, OrderItemModel
from .discount_code import DiscountCodeModel
from .product import ProductModel

__all__ = [
    "Base",
    "metadata",
    "PaymentRecordModel",
    "OrderModel",
    "OrderItemModel",
    "DiscountCodeModel",
    "ProductModel",
]
