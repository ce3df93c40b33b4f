"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[int] = None):
        details = {"order_id": order_id} if order_id is not None else None
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details,
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {identifier}",
            error_type="PaymentNotFound",
            details={"identifier": identifier},
        )


class PaymentStateConflictException(BusinessException):
    """Transition requested from a terminal or incompatible status."""

    def __init__(self, current: str, target: str):
        super().__init__(
            code=BusinessCode.PAYMENT_STATE_CONFLICT,
            message=f"Cannot move payment from {current} to {target}",
            error_type="PaymentStateConflict",
            details={"current": current, "target": target},
            field="status",
        )


class StalePaymentException(BusinessException):
    """Optimistic precondition failed: the row changed since it was read."""

    def __init__(self, payment_id: Optional[int], expected_version: int):
        super().__init__(
            code=BusinessCode.PAYMENT_STATE_CONFLICT,
            message="Payment was modified concurrently",
            error_type="StalePayment",
            details={"payment_id": payment_id, "expected_version": expected_version},
        )


class PaymentAlreadyExistsException(BusinessException):
    def __init__(self, transaction_id: str):
        super().__init__(
            code=BusinessCode.PAYMENT_STATE_CONFLICT,
            message=f"Payment with transaction {transaction_id} already exists",
            error_type="PaymentAlreadyExists",
            details={"transaction_id": transaction_id},
            field="transaction_id",
        )


class PaymentNotRefundableException(BusinessException):
    def __init__(self, status: str):
        super().__init__(
            code=BusinessCode.PAYMENT_NOT_REFUNDABLE,
            message=f"Payment in status {status} cannot be refunded",
            error_type="PaymentNotRefundable",
            details={"status": status},
            field="status",
        )


class RefundFailedException(BusinessException):
    def __init__(self, message: str, *, payment_id: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(
            code=BusinessCode.REFUND_FAILED,
            message=message,
            error_type="RefundFailed",
            details={"payment_id": payment_id, "provider": provider},
        )
