"""
订单仓储实现 - 只读写支付核心关心的字段
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.order.entity import Order, OrderPaymentStatus, OrderStatus
from domain.order.repository import OrderRepository
from infrastructure.models.order import OrderModel


class SQLAlchemyOrderRepository(OrderRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            total_amount=Decimal(str(model.total_amount)),
            currency=model.currency,
            status=OrderStatus(model.status),
            payment_status=OrderPaymentStatus(model.payment_status),
            user_id=model.user_id,
            paid_at=model.paid_at,
            updated_at=model.updated_at,
        )

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        query = select(OrderModel).where(OrderModel.id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, order: Order) -> Order:
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id)
            .values(
                status=order.status.value,
                payment_status=order.payment_status.value,
                paid_at=order.paid_at,
                updated_at=order.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return order
