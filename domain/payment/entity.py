"""
支付领域实体 - 支付聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException, PaymentStateConflictException


EXCHANGE_SCHEMA_VERSION = 1
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "PENDING"                        # 待支付
    PAID = "PAID"                              # 支付成功
    FAILED = "FAILED"                          # 支付失败
    CANCELLED = "CANCELLED"                    # 已取消（含渠道冲正）
    REFUNDED = "REFUNDED"                      # 已全额退款
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"  # 部分退款


class PaymentMethod(str, Enum):
    """支付方式 - 决定由哪个网关适配器处理"""
    CLICK = "CLICK"
    PAYME = "PAYME"
    UZUM = "UZUM"
    CASH = "CASH"  # 货到付款，无渠道调用


# 合法状态转换表；CANCELLED / REFUNDED 为终态
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.CANCELLED}),
    PaymentStatus.PAID: frozenset({
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.CANCELLED}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_millis(dt: Optional[datetime]) -> int:
    """UTC 时间转毫秒时间戳；None 返回 0（Payme 约定）"""
    if dt is None:
        return 0
    return (_ensure_utc(dt) - EPOCH) // timedelta(milliseconds=1)


def from_millis(ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=int(ms))


@dataclass
class GatewayExchange:
    """
    网关交互事件 - 支付交换日志中的一条不可变记录

    kind: initiate / callback / prepare / complete / verify / refund_intent / refund / error
    """
    kind: str
    provider: str
    payload: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    schema_version: int = EXCHANGE_SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "kind": self.kind,
            "provider": self.provider,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GatewayExchange":
        occurred = data.get("occurred_at")
        return cls(
            kind=data["kind"],
            provider=data.get("provider", ""),
            payload=data.get("payload") or {},
            occurred_at=_ensure_utc(datetime.fromisoformat(occurred)) if occurred else datetime.now(timezone.utc),
            schema_version=int(data.get("schema_version", EXCHANGE_SCHEMA_VERSION)),
        )


@dataclass
class Payment:
    """
    支付聚合根 - 管理支付生命周期

    业务规则：
    1. transaction_id 全局唯一（关联渠道回调的键）
    2. 金额必须大于0，创建后不可修改
    3. 状态转换必须遵循 ALLOWED_TRANSITIONS，终态不可回到 PENDING / PAID
    4. 交换日志只追加，不修改
    5. 每次持久化写入 version + 1（乐观锁）
    """

    id: Optional[int]
    order_id: int
    transaction_id: str
    amount: Decimal
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    currency: str = "UZS"
    provider_ref: Optional[str] = None  # 渠道侧交易ID（如 click_trans_id）

    # 退款相关
    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    # 已预留、等待渠道确认的退款金额
    pending_refund_amount: Decimal = field(default_factory=lambda: Decimal("0"))

    # 渠道生命周期时间戳
    provider_time: Optional[datetime] = None
    create_time: Optional[datetime] = None
    perform_time: Optional[datetime] = None
    cancel_time: Optional[datetime] = None
    cancel_reason: Optional[int] = None
    failure_reason: Optional[str] = None

    # 时间戳
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    exchanges: list[GatewayExchange] = field(default_factory=list)
    version: int = 0

    def __post_init__(self):
        """初始化后验证"""
        if self.amount <= 0:
            raise DomainValidationException(f"Payment amount must be positive: {self.amount}", field="amount")
        if not self.transaction_id:
            raise DomainValidationException("transaction_id is required", field="transaction_id")
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)
        self.provider_time = _ensure_utc(self.provider_time)
        self.create_time = _ensure_utc(self.create_time)
        self.perform_time = _ensure_utc(self.perform_time)
        self.cancel_time = _ensure_utc(self.cancel_time)

    @property
    def provider(self) -> str:
        return self.method.value.lower()

    def minor_amount(self, factor: int) -> int:
        """金额换算为渠道最小货币单位（如 tiyin）"""
        return int((self.amount * factor).to_integral_value())

    def record(self, kind: str, payload: dict[str, Any]) -> GatewayExchange:
        """追加一条交换事件"""
        event = GatewayExchange(kind=kind, provider=self.provider, payload=dict(payload))
        self.exchanges.append(event)
        self.updated_at = event.occurred_at
        return event

    def _transition(self, target: PaymentStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise PaymentStateConflictException(self.status.value, target.value)
        self.status = target
        self.updated_at = datetime.now(timezone.utc)

    def adopt_transaction_id(self, transaction_id: str) -> None:
        """采用渠道提供的交易ID（仅在待支付且尚未绑定渠道交易时允许）"""
        if self.status != PaymentStatus.PENDING:
            raise PaymentStateConflictException(self.status.value, PaymentStatus.PENDING.value)
        self.transaction_id = transaction_id

    def mark_paid(self, provider_ref: Optional[str] = None, *, at: Optional[datetime] = None) -> None:
        """业务规则：只能从 PENDING 转为 PAID"""
        self._transition(PaymentStatus.PAID)
        if provider_ref:
            self.provider_ref = provider_ref
        self.perform_time = _ensure_utc(at) or self.updated_at
        self.paid_at = self.perform_time
        self.failure_reason = None

    def mark_failed(self, reason: Optional[str] = None) -> None:
        """业务规则：只能从 PENDING 转为 FAILED"""
        self._transition(PaymentStatus.FAILED)
        self.failure_reason = reason

    def mark_cancelled(self, reason: Optional[int] = None, *, at: Optional[datetime] = None) -> None:
        """取消支付，允许 PENDING / PAID（渠道冲正）/ FAILED"""
        self._transition(PaymentStatus.CANCELLED)
        self.cancel_reason = reason
        self.cancel_time = _ensure_utc(at) or self.updated_at

    def refundable_amount(self) -> Decimal:
        """剩余可退金额（扣除已退款与在途预留）"""
        return self.amount - self.refunded_amount - self.pending_refund_amount

    def can_refund(self) -> bool:
        return (
            self.status in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED)
            and self.refundable_amount() > 0
        )

    def apply_refund(self, refund_amount: Decimal) -> None:
        """
        应用退款

        业务规则：
        1. 只有 PAID 或 PARTIALLY_REFUNDED 的支付才能退款
        2. 退款金额必须大于0且不超过剩余可退金额
        """
        if refund_amount <= 0:
            raise DomainValidationException(f"Refund amount must be positive: {refund_amount}", field="amount")
        if refund_amount > self.refundable_amount():
            raise DomainValidationException(
                f"Refund amount {refund_amount} exceeds refundable {self.refundable_amount()}",
                field="amount",
            )
        refunded = self.refunded_amount + refund_amount
        target = PaymentStatus.REFUNDED if refunded >= self.amount else PaymentStatus.PARTIALLY_REFUNDED
        self._transition(target)
        self.refunded_amount = refunded

    def reserve_refund(self, refund_amount: Decimal) -> None:
        """调用渠道前预留退款金额；并发或重复的退款请求因此无法超额"""
        if self.status not in (PaymentStatus.PAID, PaymentStatus.PARTIALLY_REFUNDED):
            raise PaymentStateConflictException(self.status.value, PaymentStatus.REFUNDED.value)
        if refund_amount <= 0 or refund_amount > self.refundable_amount():
            raise DomainValidationException(
                f"Refund amount {refund_amount} exceeds refundable {self.refundable_amount()}",
                field="amount",
            )
        self.pending_refund_amount += refund_amount

    def release_refund(self, refund_amount: Decimal) -> None:
        self.pending_refund_amount = max(Decimal("0"), self.pending_refund_amount - refund_amount)

    def settle_refund(self, refund_amount: Decimal) -> None:
        """渠道确认后将预留转为已退款"""
        self.release_refund(refund_amount)
        self.apply_refund(refund_amount)
