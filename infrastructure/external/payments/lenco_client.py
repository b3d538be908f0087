"""
Lenco gateway adapter over plain HTTPS (httpx).

Endpoints used:
- POST /payments/initialize  -> hosted payment URL + access code
- GET  /payments/verify/{reference} -> current status (amounts in minor units)
"""
from __future__ import annotations

from decimal import InvalidOperation
from typing import Optional

import httpx
from pydantic import ValidationError

from application.dtos.payments import PaymentInitialization, PaymentInitResult, PaymentStatusPayload
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentSnapshot
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentConfigurationError, PaymentProviderError


class LencoClient(BasePaymentClient):
    provider = "lenco"

    def __init__(
        self,
        *,
        settings: Optional[PaymentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = settings or payment_settings
        super().__init__(
            base_url=cfg.api_base_url,
            timeouts=cfg.timeouts.model_dump(),
            retry={"max": cfg.retry.max, "base": cfg.retry.base_backoff},
            transport=transport,
        )
        if not cfg.is_configured():
            raise PaymentConfigurationError(
                "Payment configuration is invalid. Please check environment variables.",
                provider=self.provider,
            )
        self._public_key = cfg.public_key
        self._currency = cfg.currency_code

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["Authorization"] = f"Bearer {self._public_key}"
        return headers

    async def initialize_payment(self, req: PaymentInitialization) -> PaymentInitResult:  # type: ignore[override]
        body = {
            "reference": req.reference,
            "amount": self._to_minor(req.amount),
            "currency": req.currency,
            "email": req.email,
            "name": req.name,
            "phone": req.phone,
            "description": req.description,
            "callback_url": req.callback_url,
            "payment_method": req.payment_method.value if req.payment_method else None,
            "provider": req.provider.value if req.provider else None,
            "metadata": req.metadata,
        }
        payload = await self._request("POST", "/payments/initialize", json=body)
        if not payload.get("success") and payload.get("status") is not True:
            raise PaymentProviderError(payload.get("message") or "Payment initialization failed", provider=self.provider)

        data = payload.get("data") or {}
        self._log("payment_initialized", reference=req.reference)
        return PaymentInitResult(
            success=True,
            reference=req.reference,
            payment_url=data.get("authorization_url") or data.get("payment_url"),
            access_code=data.get("access_code"),
        )

    async def verify_payment(self, reference: str) -> PaymentSnapshot:  # type: ignore[override]
        payload = await self._request("GET", f"/payments/verify/{reference}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise PaymentProviderError("Malformed verify response", provider=self.provider)
        status = self._map_status(data.get("status"))
        try:
            snapshot = PaymentStatusPayload(
                reference=reference,
                status=status,
                amount=self._from_minor(data.get("amount") or 0),
                currency=data.get("currency") or self._currency,
                transaction_id=data.get("id"),
                gateway_response=data.get("gateway_response"),
                paid_at=data.get("paid_at"),
            ).to_snapshot()
        except (ValidationError, DomainValidationException, InvalidOperation) as exc:
            raise PaymentProviderError(f"Malformed verify response: {exc}", provider=self.provider) from exc
        self._log("payment_verified", reference=reference, status=status.value)
        return snapshot
