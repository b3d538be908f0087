"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.payment.entity import MobileMoneyProvider, PaymentMethod, PaymentSnapshot, PaymentStatus


class PaymentInitialization(BaseModel):
    """Body sent to the gateway once local validation passed."""

    reference: str
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    currency: str
    email: str
    name: str
    description: str
    phone: str = ""
    payment_method: Optional[PaymentMethod] = None
    provider: Optional[MobileMoneyProvider] = None
    callback_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


class PaymentInitResult(BaseModel):
    success: bool
    reference: Optional[str] = None
    payment_url: Optional[str] = None
    access_code: Optional[str] = None
    error: Optional[str] = None


class PaymentTotal(BaseModel):
    base_amount: Decimal
    platform_fee: Decimal
    total_amount: Decimal
    provider_receives: Decimal


class PaymentStatusPayload(BaseModel):
    """Wire form of a status snapshot (store rows, pub/sub messages)."""

    reference: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    transaction_id: Optional[str] = None
    gateway_response: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("transaction_id", mode="before")
    @classmethod
    def _stringify_id(cls, v):
        return None if v is None else str(v)

    def to_snapshot(self) -> PaymentSnapshot:
        return PaymentSnapshot(**self.model_dump())

    @classmethod
    def from_snapshot(cls, snapshot: PaymentSnapshot) -> "PaymentStatusPayload":
        return cls(
            reference=snapshot.reference,
            status=snapshot.status,
            amount=snapshot.amount,
            currency=snapshot.currency,
            transaction_id=snapshot.transaction_id,
            gateway_response=snapshot.gateway_response,
            paid_at=snapshot.paid_at,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
        )
