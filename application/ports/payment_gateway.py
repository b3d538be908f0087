"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import PaymentInitialization, PaymentInitResult
from domain.payment.entity import PaymentSnapshot


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def initialize_payment(self, req: PaymentInitialization) -> PaymentInitResult: ...

    async def verify_payment(self, reference: str) -> PaymentSnapshot: ...
