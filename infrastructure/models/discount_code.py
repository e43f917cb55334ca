"""
折扣码数据库模型
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Numeric, String

from .base import Base


class DiscountCodeModel(Base):
    __tablename__ = "discount_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False, index=True, comment="折扣码（大写）")
    percentage = Column(Numeric(precision=5, scale=2), nullable=False)
    scope = Column(String(20), nullable=False, comment="feedback/coupon")
    owner_user_id = Column(String(64), nullable=True, index=True)
    single_use = Column(Boolean, nullable=False, default=True)
    is_used = Column(Boolean, nullable=False, default=False)
    used_by = Column(String(64), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    product_ids = Column(JSON, nullable=True)
    seller_ids = Column(JSON, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<DiscountCodeModel(code='{self.code}', percentage={self.percentage}, is_used={self.is_used})>"
