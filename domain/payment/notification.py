"""
通知策略 - 决定一次状态转换是否需要向用户展示消息
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from domain.payment.entity import PaymentStatus
from domain.payment.fees import format_amount


@dataclass(frozen=True)
class UserMessage:
    title: str
    description: str
    variant: str = "default"  # default | destructive
    status: Optional[PaymentStatus] = None


_TEMPLATES = {
    PaymentStatus.COMPLETED: ("Payment Successful", "Your payment of {amount} was processed successfully.", "default"),
    PaymentStatus.FAILED: ("Payment Failed", "Your payment of {amount} failed. Please try again.", "destructive"),
    PaymentStatus.CANCELLED: ("Payment Cancelled", "Your payment of {amount} was cancelled.", "destructive"),
    PaymentStatus.PENDING: ("Payment Processing", "Your payment of {amount} is being processed.", "default"),
}

_TIMEOUT_TEMPLATE = (
    "Payment Still Pending",
    "Your payment of {amount} is still pending. Please check again later.",
    "destructive",
)


class NotificationPolicy:
    """首次观测只是状态同步，不视为“变化”，因此不产生消息。"""

    def on_transition(
        self,
        previous: Optional[PaymentStatus],
        next_status: PaymentStatus,
        amount: Decimal,
        currency: str,
    ) -> Optional[UserMessage]:
        if previous is None or previous == next_status:
            return None
        title, description, variant = _TEMPLATES[PaymentStatus(next_status)]
        return UserMessage(
            title=title,
            description=description.format(amount=format_amount(amount, currency)),
            variant=variant,
            status=PaymentStatus(next_status),
        )

    def on_timeout(self, amount: Decimal, currency: str) -> UserMessage:
        title, description, variant = _TIMEOUT_TEMPLATE
        return UserMessage(
            title=title,
            description=description.format(amount=format_amount(amount, currency)),
            variant=variant,
            status=PaymentStatus.PENDING,
        )
