"""
支付记录数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, Numeric, String, Text

from .base import Base


class PaymentRecordModel(Base):
    """
    支付记录数据库模型

    所有状态机规则都在 domain.payment.entity.PaymentRecord 中，
    这里只负责映射；完成转换通过条件 UPDATE 保证原子性
    """
    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(100), unique=True, index=True, nullable=False, comment="交易号")
    user_id = Column(String(64), nullable=False, index=True, comment="用户ID")

    provider = Column(String(50), nullable=False, index=True, comment="支付网关: datafast/deuna/simulation")
    checkout_id = Column(String(200), nullable=True, comment="网关结账/会话ID")
    provider_ref = Column(String(200), nullable=True, comment="网关交易ID")
    checkout_session_id = Column(String(200), nullable=True, comment="结账快照键")
    payment_method = Column(String(50), nullable=True, comment="支付方式")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码 ISO-4217")

    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="状态: pending/processing/completed/failed/cancelled/refunded"
    )
    order_id = Column(Integer, nullable=True, comment="关联订单ID（完成后写入）")
    error_code = Column(String(100), nullable=True, comment="错误码")
    error_message = Column(Text, nullable=True, comment="错误信息")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    completed_at = Column(DateTime(timezone=True), nullable=True, comment="完成时间")

    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    __table_args__ = (
        Index("ix_payment_records_status_created", "status", "created_at"),
        Index("ix_payment_records_provider_checkout", "provider", "checkout_id"),
    )

    def __repr__(self):
        return (
            f"<PaymentRecordModel(id={self.id}, transaction_id='{self.transaction_id}', "
            f"provider='{self.provider}', amount={self.amount}, status='{self.status}')>"
        )
