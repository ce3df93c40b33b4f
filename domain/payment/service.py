"""
支付领域服务 - 支付状态到订单状态的对账传播
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import OrderNotFoundException
from domain.order.entity import Order, OrderPaymentStatus, OrderStatus
from domain.order.repository import OrderRepository

from .entity import PaymentStatus


# 支付状态 → 订单支付状态；PENDING 不触发对账
_TARGETS: dict[PaymentStatus, OrderPaymentStatus] = {
    PaymentStatus.PAID: OrderPaymentStatus.PAID,
    PaymentStatus.FAILED: OrderPaymentStatus.FAILED,
    PaymentStatus.CANCELLED: OrderPaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED: OrderPaymentStatus.REFUNDED,
}

# 失败不能覆盖的订单支付状态
_FAILED_PROTECTED = frozenset({OrderPaymentStatus.PAID, OrderPaymentStatus.REFUNDED})


class PaymentStatusReconciler:
    """
    订单支付状态对账器 - 订单 payment_status 的唯一写入方

    规则：
    1. PAID      -> payment_status=PAID, status=CONFIRMED, paid_at=now
    2. CANCELLED -> payment_status=CANCELLED, status=CANCELLED；
                    订单已由其他支付结清（settled_elsewhere）时不传播
    3. FAILED    -> 仅 payment_status=FAILED，且不覆盖 PAID / REFUNDED
    4. REFUNDED  -> payment_status=REFUNDED
    5. 目标状态已生效时为空操作（返回 False）

    调用方负责在与支付状态变更相同的工作单元内调用，保证二者同一事务提交。
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def reconcile(self, order: Order, new_status: PaymentStatus, *, settled_elsewhere: bool = False) -> bool:
        """就地修改订单；返回是否发生变更"""
        target = _TARGETS.get(PaymentStatus(new_status))
        if target is None:
            return False

        if target == OrderPaymentStatus.PAID:
            if order.payment_status == target and order.status == OrderStatus.CONFIRMED:
                return False
            order.payment_status = target
            order.status = OrderStatus.CONFIRMED
            order.paid_at = order.paid_at or self._clock()
        elif target == OrderPaymentStatus.CANCELLED:
            if settled_elsewhere:
                return False
            if order.payment_status == target and order.status == OrderStatus.CANCELLED:
                return False
            order.payment_status = target
            order.status = OrderStatus.CANCELLED
        elif target == OrderPaymentStatus.FAILED:
            if order.payment_status == target or order.payment_status in _FAILED_PROTECTED:
                return False
            order.payment_status = target
        else:
            if order.payment_status == target:
                return False
            order.payment_status = target

        order.updated_at = self._clock()
        return True

    async def apply(
        self,
        orders: OrderRepository,
        order_id: int,
        new_status: PaymentStatus,
        *,
        order: Optional[Order] = None,
        settled_elsewhere: bool = False,
    ) -> bool:
        """加载（行锁）订单、对账并写回；未变更时不写库"""
        if order is None:
            order = await orders.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundException(order_id)
        changed = self.reconcile(order, new_status, settled_elsewhere=settled_elsewhere)
        if changed:
            await orders.update(order)
        return changed
