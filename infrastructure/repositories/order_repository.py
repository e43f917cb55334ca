"""
订单仓储实现
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import OrderAlreadyExistsException
from domain.order.entity import Order, OrderItem
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderItemModel, OrderModel


logger = get_logger(__name__)


def _dec(value) -> Decimal:
    return Decimal(str(value))


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            order_number=model.order_number,
            user_id=model.user_id,
            payment_transaction_id=model.payment_transaction_id,
            payment_method=model.payment_method,
            currency=model.currency,
            subtotal_original=_dec(model.subtotal_original),
            subtotal_with_discounts=_dec(model.subtotal_with_discounts),
            coupon_code=model.coupon_code,
            coupon_discount_amount=_dec(model.coupon_discount_amount),
            iva_amount=_dec(model.iva_amount),
            shipping_cost=_dec(model.shipping_cost),
            total=_dec(model.total),
            shipping_data=model.shipping_data or {},
            billing_data=model.billing_data or {},
            shipping_breakdown=model.shipping_breakdown or {},
            items=[
                OrderItem(
                    id=i.id,
                    product_id=i.product_id,
                    seller_id=i.seller_id,
                    quantity=i.quantity,
                    unit_price=_dec(i.unit_price),
                    final_unit_price=_dec(i.final_unit_price),
                    subtotal=_dec(i.subtotal),
                    seller_discount_pct=_dec(i.seller_discount_pct),
                    volume_discount_pct=_dec(i.volume_discount_pct),
                    attributes=i.attributes or {},
                )
                for i in model.items
            ],
            status=model.status,
            created_at=model.created_at,
        )

    async def add(self, order: Order) -> Order:
        model = OrderModel(
            order_number=order.order_number,
            user_id=order.user_id,
            payment_transaction_id=order.payment_transaction_id,
            payment_method=order.payment_method,
            status=order.status,
            currency=order.currency,
            subtotal_original=order.subtotal_original,
            subtotal_with_discounts=order.subtotal_with_discounts,
            coupon_code=order.coupon_code,
            coupon_discount_amount=order.coupon_discount_amount,
            iva_amount=order.iva_amount,
            shipping_cost=order.shipping_cost,
            total=order.total,
            shipping_data=order.shipping_data,
            billing_data=order.billing_data,
            shipping_breakdown=order.shipping_breakdown,
            created_at=order.created_at,
            items=[
                OrderItemModel(
                    product_id=i.product_id,
                    seller_id=i.seller_id,
                    quantity=i.quantity,
                    unit_price=i.unit_price,
                    final_unit_price=i.final_unit_price,
                    subtotal=i.subtotal,
                    seller_discount_pct=i.seller_discount_pct,
                    volume_discount_pct=i.volume_discount_pct,
                    attributes=i.attributes,
                )
                for i in order.items
            ],
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            if "payment_transaction_id" in str(e).lower():
                raise OrderAlreadyExistsException(order.payment_transaction_id) from e
            raise
        order.id = model.id
        for entity_item, model_item in zip(order.items, model.items):
            entity_item.id = model_item.id
        logger.info(
            "order_created",
            order_id=model.id,
            order_number=model.order_number,
            transaction_id=model.payment_transaction_id,
            total=str(model.total),
        )
        return order

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        result = await self.session.execute(select(OrderModel).where(OrderModel.id == order_id))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_by_payment_transaction_id(self, transaction_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.payment_transaction_id == transaction_id)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None
