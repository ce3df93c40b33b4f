"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import PaymentAlreadyExistsException, StalePaymentException
from domain.payment.entity import GatewayExchange, Payment, PaymentMethod, PaymentStatus
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            order_id=model.order_id,
            transaction_id=model.transaction_id,
            amount=Decimal(str(model.amount)),
            method=PaymentMethod(model.method),
            status=PaymentStatus(model.status),
            currency=model.currency,
            provider_ref=model.provider_ref,
            refunded_amount=Decimal(str(model.refunded_amount or 0)),
            pending_refund_amount=Decimal(str(model.pending_refund_amount or 0)),
            provider_time=model.provider_time,
            create_time=model.create_time,
            perform_time=model.perform_time,
            cancel_time=model.cancel_time,
            cancel_reason=model.cancel_reason,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            paid_at=model.paid_at,
            exchanges=[GatewayExchange.from_dict(e) for e in (model.exchanges or [])],
            version=model.version,
        )

    def _values(self, entity: Payment) -> dict:
        """领域实体 -> 列值（不含主键与版本号）"""
        return {
            "order_id": entity.order_id,
            "transaction_id": entity.transaction_id,
            "method": entity.method.value,
            "provider_ref": entity.provider_ref,
            "amount": entity.amount,
            "currency": entity.currency,
            "refunded_amount": entity.refunded_amount,
            "pending_refund_amount": entity.pending_refund_amount,
            "status": entity.status.value,
            "failure_reason": entity.failure_reason,
            "provider_time": entity.provider_time,
            "create_time": entity.create_time,
            "perform_time": entity.perform_time,
            "cancel_time": entity.cancel_time,
            "cancel_reason": entity.cancel_reason,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
            "paid_at": entity.paid_at,
            "exchanges": [e.to_dict() for e in entity.exchanges],
        }

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        values = {k: v for k, v in self._values(payment).items() if v is not None}
        db_payment = PaymentModel(**values, version=0)
        try:
            # 保存点：唯一约束冲突只回滚本条插入，不影响外层事务
            async with self.session.begin_nested():
                self.session.add(db_payment)
                await self.session.flush()
        except IntegrityError as e:
            logger.warning("payment_create_conflict", transaction_id=payment.transaction_id)
            raise PaymentAlreadyExistsException(payment.transaction_id) from e
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            transaction_id=db_payment.transaction_id,
            method=db_payment.method,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """根据ID获取支付"""
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.id == payment_id)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.transaction_id == transaction_id)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_latest_by_order(self, order_id: int) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at.desc(), PaymentModel.id.desc())
            .limit(1)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def list_by_order(
        self,
        order_id: int,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> List[Payment]:
        """获取订单的支付列表"""
        query = select(PaymentModel).where(PaymentModel.order_id == order_id)
        if method:
            query = query.where(PaymentModel.method == method.value)
        if status:
            query = query.where(PaymentModel.status == status.value)
        query = query.order_by(PaymentModel.created_at.asc(), PaymentModel.id.asc())

        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_by_method_created_between(
        self,
        method: PaymentMethod,
        start: datetime,
        end: datetime,
        statuses: Optional[List[PaymentStatus]] = None,
    ) -> List[Payment]:
        query = select(PaymentModel).where(
            PaymentModel.method == method.value,
            PaymentModel.create_time >= start,
            PaymentModel.create_time <= end,
        )
        if statuses:
            query = query.where(PaymentModel.status.in_([s.value for s in statuses]))
        query = query.order_by(PaymentModel.create_time.asc())

        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_pending(
        self,
        method: PaymentMethod,
        *,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.method == method.value,
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.created_at <= older_than,
            )
            .order_by(PaymentModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment, *, expected_version: int) -> Payment:
        """条件更新：WHERE id = ? AND version = ?"""
        stmt = (
            update(PaymentModel)
            .where(PaymentModel.id == payment.id, PaymentModel.version == expected_version)
            .values(**self._values(payment), version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                "payment_update_stale",
                payment_id=payment.id,
                expected_version=expected_version,
            )
            raise StalePaymentException(payment.id, expected_version)
        payment.version = expected_version + 1
        return payment
