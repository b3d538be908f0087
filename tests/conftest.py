"""Pytest bootstrap configuration.

Pin environment variables before test collection and before modules that
build settings at import time are loaded.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PAYMENT_PUBLIC_KEY", "pk_test_123")
os.environ.setdefault("PAYMENT_API_BASE_URL", "https://gateway.test/v1")

import pytest
from decimal import Decimal

from core.settings import PaymentSettings
from domain.payment.entity import PaymentSnapshot, PaymentStatus
from infrastructure.realtime.inmemory import InMemoryPaymentStatusStore


REFERENCE = "WC_1700000000_AB12CD"


def _make_snapshot(status="pending", *, reference=REFERENCE, amount="50", currency="ZMW") -> PaymentSnapshot:
    return PaymentSnapshot(
        reference=reference,
        status=PaymentStatus(status),
        amount=Decimal(amount),
        currency=currency,
    )


class Recorder:
    """Collects status-change callbacks and user messages."""

    def __init__(self) -> None:
        self.changes = []
        self.messages = []

    def on_status_change(self, snapshot) -> None:
        self.changes.append(snapshot.status)

    def notify(self, message) -> None:
        self.messages.append(message)

    @property
    def titles(self):
        return [m.title for m in self.messages]


@pytest.fixture
def make_snapshot():
    return _make_snapshot


@pytest.fixture
def reference():
    return REFERENCE


@pytest.fixture
def store():
    return InMemoryPaymentStatusStore()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def settings():
    # Long poll interval: tests drive the channels explicitly unless they opt in.
    return PaymentSettings(poll_interval_ms=60_000, pending_timeout_ms=300_000)


@pytest.fixture
def fast_settings():
    return PaymentSettings(poll_interval_ms=10, pending_timeout_ms=60_000)
