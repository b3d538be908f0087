"""
支付领域实体 - 支付状态快照与支付请求
"""
from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """支付状态枚举：pending 为唯一初始状态，其余为终态"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


TERMINAL_STATUSES = frozenset(s for s in PaymentStatus if s.is_terminal)


class PaymentMethod(str, Enum):
    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"


class MobileMoneyProvider(str, Enum):
    MTN = "mtn"
    AIRTEL = "airtel"
    ZAMTEL = "zamtel"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_decimal(value: Any) -> Decimal:
    """把 int/float/str 统一转换为 Decimal（float 经 str 转换以避免二进制误差）"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"not a number: {value!r}")
    return Decimal(str(value))


@dataclass
class PaymentSnapshot:
    """
    支付状态快照 - 状态存储中某一时刻的支付记录

    业务规则：
    1. 金额必须大于0
    2. 货币代码为3位字母，创建后不变
    3. 离开 pending 后状态不再变化（由跟踪器检测异常）
    """

    reference: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    transaction_id: Optional[str] = None
    gateway_response: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.reference:
            raise DomainValidationException("支付引用不能为空", field="reference")
        self.status = PaymentStatus(self.status)
        self._validate_amount()
        self._validate_currency()
        self.created_at = _ensure_utc(self.created_at) or datetime.now(timezone.utc)
        self.updated_at = _ensure_utc(self.updated_at) or self.created_at
        self.paid_at = _ensure_utc(self.paid_at)

    def _validate_amount(self) -> None:
        """业务规则：金额必须大于0"""
        try:
            self.amount = to_decimal(self.amount)
        except (InvalidOperation, ValueError):
            raise DomainValidationException(f"无效的支付金额: {self.amount}", field="amount")
        if not self.amount.is_finite() or self.amount <= 0:
            raise DomainValidationException(f"支付金额必须大于0: {self.amount}", field="amount")

    def _validate_currency(self) -> None:
        """业务规则：货币代码必须是3位字母"""
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"无效的货币代码: {self.currency}", field="currency")
        self.currency = self.currency.upper()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class PaymentRequest:
    """待提交的支付请求（校验器输入），字段允许为空以便一次性收集全部错误"""

    amount: Any
    email: str = ""
    name: str = ""
    description: str = ""
    phone: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    provider: Optional[MobileMoneyProvider] = None
    metadata: dict = field(default_factory=dict)


def generate_payment_reference(prefix: str = "WC") -> str:
    """生成支付引用：{prefix}_{毫秒时间戳}_{6位大写字母数字}"""
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}_{millis}_{suffix}"
