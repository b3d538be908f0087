"""领域层业务异常定义，供领域、应用与基础设施使用。"""
from __future__ import annotations

from typing import Iterable, Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


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


class InvalidAmountException(BusinessException):
    """金额必须为正的有限数"""

    def __init__(self, amount: object):
        super().__init__(
            code=PaymentCode.INVALID_AMOUNT,
            message=f"Amount must be a positive number: {amount}",
            error_type="InvalidAmount",
            details={"amount": str(amount)},
            field="amount",
        )


class InvalidPercentageException(BusinessException):
    """费率必须位于 [0, 100]"""

    def __init__(self, percentage: object):
        super().__init__(
            code=PaymentCode.INVALID_PERCENTAGE,
            message=f"Fee percentage must be within [0, 100]: {percentage}",
            error_type="InvalidPercentage",
            details={"percentage": str(percentage)},
            field="fee_percentage",
        )


class PaymentValidationException(BusinessException):
    """支付请求预校验失败，携带全部错误类型"""

    def __init__(self, errors: Iterable[object]):
        self.errors = list(errors)
        kinds = [getattr(e, "value", str(e)) for e in self.errors]
        super().__init__(
            code=PaymentCode.REQUEST_INVALID,
            message="Payment request failed validation",
            error_type="ValidationError",
            details={"errors": kinds},
        )


class PaymentNotFoundException(BusinessException):
    """支付记录不存在"""

    def __init__(self, reference: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message="Payment not found",
            error_type="NotFound",
            details={"reference": reference},
        )


class PaymentTransportException(BusinessException):
    """状态存储/网络访问失败"""

    def __init__(self, message: str = "Failed to fetch payment status", *, reference: Optional[str] = None, cause: Optional[str] = None):
        details = {"reference": reference}
        if cause:
            details["cause"] = cause
        super().__init__(
            code=PaymentCode.TRANSPORT_ERROR,
            message=message,
            error_type="TransportError",
            details=details,
        )


class PendingTimeoutException(BusinessException):
    """支付在超时时间内仍处于 pending"""

    def __init__(self, reference: str, timeout_seconds: float):
        super().__init__(
            code=PaymentCode.PENDING_TIMEOUT,
            message="Payment still pending",
            error_type="PendingTimeout",
            details={"reference": reference, "timeout_seconds": timeout_seconds},
        )
