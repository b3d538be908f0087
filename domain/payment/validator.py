"""
支付请求预校验 - 一次性返回全部错误，不访问网络或存储
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import List, Optional

from domain.payment.entity import PaymentMethod, PaymentRequest, to_decimal
from domain.payment.fees import FeeBreakdown, calculate_fee


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Mobile-money number patterns per country (applied after removing whitespace)
PHONE_PATTERNS = {
    "ZM": re.compile(r"^(260)?(09[0-9]{8})$"),
}
FALLBACK_MIN_PHONE_LENGTH = 10

MIN_NAME_LENGTH = 2
MIN_DESCRIPTION_LENGTH = 5


class ValidationErrorKind(str, Enum):
    AMOUNT_OUT_OF_RANGE = "amount_out_of_range"
    INVALID_EMAIL = "invalid_email"
    INVALID_NAME = "invalid_name"
    MISSING_DESCRIPTION = "missing_description"
    INVALID_PHONE = "invalid_phone"
    MISSING_PROVIDER = "missing_provider"


@dataclass(frozen=True)
class ValidatorConfig:
    min_amount: Decimal = Decimal("5")
    max_amount: Decimal = Decimal("1000000")
    country_code: str = "ZM"
    fee_percentage: Decimal = Decimal("2")

    @classmethod
    def from_settings(cls, settings) -> "ValidatorConfig":
        return cls(
            min_amount=settings.min_payment_amount,
            max_amount=settings.max_payment_amount,
            country_code=settings.country_code,
            fee_percentage=settings.platform_fee_percentage,
        )


@dataclass
class ValidationResult:
    valid: bool
    errors: List[ValidationErrorKind] = field(default_factory=list)
    fee: Optional[FeeBreakdown] = None


def validate_phone_number(phone: Optional[str], country_code: str = "ZM") -> bool:
    """校验移动支付手机号；未配置模式的国家只要求长度 >= 10"""
    if not phone:
        return False
    cleaned = re.sub(r"\s", "", phone)
    pattern = PHONE_PATTERNS.get(country_code.upper())
    if pattern is None:
        return len(cleaned) >= FALLBACK_MIN_PHONE_LENGTH
    return bool(pattern.match(cleaned))


class PaymentRequestValidator:
    def __init__(self, config: ValidatorConfig) -> None:
        self.config = config

    def validate(self, request: PaymentRequest) -> ValidationResult:
        errors: List[ValidationErrorKind] = []

        fee = self._check_amount(request.amount, errors)

        if not request.email or not EMAIL_PATTERN.match(request.email):
            errors.append(ValidationErrorKind.INVALID_EMAIL)

        if len((request.name or "").strip()) < MIN_NAME_LENGTH:
            errors.append(ValidationErrorKind.INVALID_NAME)

        if len((request.description or "").strip()) < MIN_DESCRIPTION_LENGTH:
            errors.append(ValidationErrorKind.MISSING_DESCRIPTION)

        if request.payment_method == PaymentMethod.MOBILE_MONEY:
            if not validate_phone_number(request.phone, self.config.country_code):
                errors.append(ValidationErrorKind.INVALID_PHONE)
            if not request.provider:
                errors.append(ValidationErrorKind.MISSING_PROVIDER)

        return ValidationResult(valid=not errors, errors=errors, fee=fee)

    def _check_amount(self, raw_amount, errors: List[ValidationErrorKind]) -> Optional[FeeBreakdown]:
        try:
            amount = to_decimal(raw_amount)
        except (InvalidOperation, ValueError, TypeError):
            errors.append(ValidationErrorKind.AMOUNT_OUT_OF_RANGE)
            return None
        if not amount.is_finite() or not (self.config.min_amount <= amount <= self.config.max_amount):
            errors.append(ValidationErrorKind.AMOUNT_OUT_OF_RANGE)
            return None
        return calculate_fee(amount, self.config.fee_percentage)
