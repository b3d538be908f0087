"""
Gateway failures, mapped onto BusinessException so callers handle one hierarchy.

- PaymentProviderError: the gateway answered but refused or returned garbage
- PaymentRecoverableError: the gateway could not be reached; retry later
- PaymentConfigurationError: credentials/base URL missing, nothing was sent
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentGatewayError(BusinessException):
    code: int = PaymentCode.PROVIDER_ERROR
    error_type: str = "PaymentGatewayError"

    def __init__(self, message: str, *, provider: str, provider_code: Optional[str] = None) -> None:
        self.provider = provider
        self.provider_code = provider_code
        details = {"provider": provider}
        if provider_code is not None:
            details["provider_code"] = provider_code
        super().__init__(
            code=type(self).code,
            message=message,
            error_type=type(self).error_type,
            details=details,
        )


class PaymentProviderError(PaymentGatewayError):
    error_type = "PaymentProviderError"


class PaymentRecoverableError(PaymentGatewayError):
    code = PaymentCode.PROVIDER_RECOVERABLE
    error_type = "PaymentRecoverableError"


class PaymentConfigurationError(PaymentGatewayError):
    error_type = "PaymentConfigurationError"
