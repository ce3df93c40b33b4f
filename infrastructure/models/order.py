"""
订单数据库模型 - 仅映射支付核心需要读写的列
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True, comment="用户ID")
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单总额")
    currency = Column(String(3), nullable=False, default="UZS", comment="货币代码")
    status = Column(String(32), nullable=False, default="PENDING", index=True, comment="履约状态")
    payment_status = Column(String(32), nullable=False, default="PENDING", index=True, comment="支付状态")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付时间")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, status={self.status}, payment_status={self.payment_status})>"
