"""
订单数据库模型
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), unique=True, nullable=False, comment="订单号")
    user_id = Column(String(64), nullable=False, index=True, comment="用户ID")
    # 唯一约束：同一笔支付最多一个订单
    payment_transaction_id = Column(String(100), unique=True, nullable=False, comment="支付交易号")
    payment_method = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="paid")

    currency = Column(String(3), nullable=False, default="USD")
    subtotal_original = Column(Numeric(precision=15, scale=2), nullable=False)
    subtotal_with_discounts = Column(Numeric(precision=15, scale=2), nullable=False)
    coupon_code = Column(String(50), nullable=True)
    coupon_discount_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0)
    iva_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    shipping_cost = Column(Numeric(precision=15, scale=2), nullable=False)
    total = Column(Numeric(precision=15, scale=2), nullable=False)

    shipping_data = Column(JSON, nullable=False)
    billing_data = Column(JSON, nullable=False)
    shipping_breakdown = Column(JSON, nullable=True, comment="卖家运费分成（用于结算）")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, order_number='{self.order_number}', total={self.total})>"


class OrderItemModel(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    seller_id = Column(String(64), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(precision=15, scale=2), nullable=False)
    final_unit_price = Column(Numeric(precision=15, scale=2), nullable=False)
    subtotal = Column(Numeric(precision=15, scale=2), nullable=False)
    seller_discount_pct = Column(Numeric(precision=5, scale=2), nullable=False, default=0)
    volume_discount_pct = Column(Numeric(precision=5, scale=2), nullable=False, default=0)
    attributes = Column(JSON, nullable=True)

    order = relationship("OrderModel", back_populates="items")
