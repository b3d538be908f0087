"""
Payment tracking domain events.

Dataclass events record payment tracking facts for downstream handling
(e.g., status-change callbacks, anomaly audits). Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid

from domain.payment.entity import PaymentStatus


@dataclass
class PaymentEvent:
    reference: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentStatusChanged(PaymentEvent):
    previous: Optional[PaymentStatus] = None
    current: PaymentStatus = PaymentStatus.PENDING
    source: str = ""  # fetch | push | poll | refresh


@dataclass
class PaymentStatusAnomaly(PaymentEvent):
    """A status different from the recorded terminal one was reported."""
    observed: Optional[PaymentStatus] = None
    reported: Optional[PaymentStatus] = None
    source: str = ""


@dataclass
class PaymentTrackingTimedOut(PaymentEvent):
    timeout_seconds: float = 0.0
