"""
Shared plumbing for gateway clients: one lazily created httpx client,
tenacity retries on transport errors, JSON error mapping and status mapping.

Subclasses set ``provider`` and implement initialize_payment/verify_payment.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.dtos.payments import PaymentInitialization, PaymentInitResult
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.payment.entity import PaymentSnapshot, PaymentStatus
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL, UNKNOWN_PROVIDER_STATUS


logger = get_logger(__name__)

_RETRYABLE = (httpx.TimeoutException, httpx.TransportError)
_MINOR_UNITS = Decimal(100)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        base_url: str = "",
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        t = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        r = retry or {"max": 2, "base": 0.2}
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(t["total"], connect=t["connect"], read=t["read"], write=t["write"])
        self._attempts = int(r["max"]) + 1
        self._backoff = float(r["base"])
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def _default_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    def _client(self) -> httpx.AsyncClient:
        # Reused across calls until aclose().
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=self._default_headers(),
                transport=self._transport,
            )
        return self._http

    async def aclose(self) -> None:
        http, self._http = self._http, None
        if http is not None:
            await http.aclose()

    async def _send(self, method: str, path: str, json: Optional[dict]) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        ):
            with attempt:
                return await self._client().request(method, path, json=json)

    async def _request(self, method: str, path: str, *, json: Optional[dict] = None) -> dict:
        """Send one JSON request; transport errors are retried, then raised as recoverable."""
        try:
            resp = await self._send(method, path, json)
        except (*_RETRYABLE, RetryError) as exc:
            self._log("payment_provider_unreachable", path=path, error=str(exc))
            raise PaymentRecoverableError(str(exc) or "Network error", provider=self.provider) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            self._log("payment_provider_rejected", path=path, status_code=resp.status_code)
            raise PaymentProviderError(
                message or f"HTTP {resp.status_code}: {resp.reason_phrase}",
                provider=self.provider,
                provider_code=str(resp.status_code),
            )
        if not isinstance(body, dict):
            raise PaymentProviderError("Invalid JSON response", provider=self.provider)
        return body

    async def initialize_payment(self, req: PaymentInitialization) -> PaymentInitResult:  # type: ignore[override]
        raise NotImplementedError

    async def verify_payment(self, reference: str) -> PaymentSnapshot:  # type: ignore[override]
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> PaymentStatus:
        """Map a gateway status onto ours; unknown values count as failed."""
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return PaymentStatus(mapping.get((provider_status or "").lower(), UNKNOWN_PROVIDER_STATUS))

    @staticmethod
    def _to_minor(amount: Decimal) -> int:
        return int((amount * _MINOR_UNITS).to_integral_value())

    @staticmethod
    def _from_minor(amount: Any) -> Decimal:
        return Decimal(str(amount)) / _MINOR_UNITS

    def _log(self, event: str, **kwargs) -> None:
        logger.info(event, provider=self.provider, **kwargs)
