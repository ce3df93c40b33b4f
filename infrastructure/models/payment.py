"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 订单与交易关联
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True, comment="订单ID")
    transaction_id = Column(String(100), unique=True, nullable=False, comment="交易关联ID（渠道回调键）")

    # 支付渠道信息
    method = Column(String(32), nullable=False, index=True, comment="支付方式: CLICK/PAYME/UZUM/CASH")
    provider_ref = Column(String(200), nullable=True, index=True, comment="渠道侧交易ID")

    # 金额信息（主货币单位，使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="UZS", comment="货币代码 ISO-4217")
    refunded_amount = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        comment="已退款金额"
    )
    pending_refund_amount = Column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=0,
        comment="在途退款预留金额"
    )

    # 状态
    status = Column(
        String(32),
        nullable=False,
        default="PENDING",
        index=True,
        comment="支付状态: PENDING/PAID/FAILED/CANCELLED/REFUNDED/PARTIALLY_REFUNDED"
    )
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    # 渠道生命周期时间
    provider_time = Column(DateTime(timezone=True), nullable=True, comment="渠道创建时间")
    create_time = Column(DateTime(timezone=True), nullable=True, comment="交易创建时间")
    perform_time = Column(DateTime(timezone=True), nullable=True, comment="交易完成时间")
    cancel_time = Column(DateTime(timezone=True), nullable=True, comment="交易取消时间")
    cancel_reason = Column(Integer, nullable=True, comment="取消原因码（Payme）")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    # 渠道交换日志（只追加）
    exchanges = Column(JSON, nullable=False, default=list, comment="网关交换事件列表")

    # 乐观锁版本号
    version = Column(Integer, nullable=False, default=0, comment="版本号")

    __table_args__ = (
        Index("ix_payments_order_method", "order_id", "method"),
        Index("ix_payments_method_status_created", "method", "status", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, transaction_id={self.transaction_id}, "
            f"method={self.method}, status={self.status})>"
        )
