"""
商品目录数据库模型
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(64), unique=True, nullable=False, index=True, comment="商品ID")
    seller_id = Column(String(64), nullable=False, index=True, comment="卖家ID")
    name = Column(String(200), nullable=False, default="")
    price = Column(Numeric(precision=12, scale=2), nullable=False, comment="单价")
    seller_discount_pct = Column(Numeric(precision=5, scale=2), nullable=False, default=0, comment="卖家折扣百分比")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<ProductModel(product_id='{self.product_id}', price={self.price}, is_active={self.is_active})>"
