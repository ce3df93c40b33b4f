"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Payment, PaymentMethod, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录；transaction_id 重复时抛出 PaymentAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        """根据交易关联ID获取支付"""
        pass

    @abstractmethod
    async def get_latest_by_order(self, order_id: int) -> Optional[Payment]:
        """获取订单最近一笔支付"""
        pass

    @abstractmethod
    async def list_by_order(
        self,
        order_id: int,
        *,
        method: Optional[PaymentMethod] = None,
        status: Optional[PaymentStatus] = None,
    ) -> List[Payment]:
        """获取订单的支付列表（按创建时间升序）"""
        pass

    @abstractmethod
    async def list_by_method_created_between(
        self,
        method: PaymentMethod,
        start: datetime,
        end: datetime,
        statuses: Optional[List[PaymentStatus]] = None,
    ) -> List[Payment]:
        """按渠道与 create_time 区间查询（Payme GetStatement）"""
        pass

    @abstractmethod
    async def list_pending(
        self,
        method: PaymentMethod,
        *,
        older_than: datetime,
        limit: int = 100,
    ) -> List[Payment]:
        """获取早于指定时间仍为待支付的支付（后台轮询）"""
        pass

    @abstractmethod
    async def update(self, payment: Payment, *, expected_version: int) -> Payment:
        """
        条件更新支付记录

        仅当存储中的 version 等于 expected_version 时写入，并将 version + 1；
        否则抛出 StalePaymentException。
        """
        pass
