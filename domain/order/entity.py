"""
订单领域实体 - 订单由其他子系统拥有

支付核心只读取订单金额，并通过状态对账器写入 payment_status / status / paid_at。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    """订单履约状态"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderPaymentStatus(str, Enum):
    """订单支付状态"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


# 已履约（已发货/已送达）的订单
FULFILLED_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


@dataclass
class Order:
    id: int
    total_amount: Decimal
    currency: str = "UZS"
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    user_id: Optional[int] = None
    paid_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID

    @property
    def is_fulfilled(self) -> bool:
        return self.status in FULFILLED_STATUSES

    def outstanding_amount(self) -> Decimal:
        """待支付金额：已支付的订单为 0"""
        if self.payment_status in (OrderPaymentStatus.PAID, OrderPaymentStatus.REFUNDED):
            return Decimal("0")
        return self.total_amount
