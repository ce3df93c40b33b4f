"""
订单仓储接口 - 支付核心只需要按ID读取与更新订单
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        """根据ID获取订单；for_update=True 时在事务内加行锁"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """更新订单的支付相关字段"""
        pass
