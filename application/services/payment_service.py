"""
Application service orchestrating payment initiation use-cases.

This class depends only on the application PaymentGateway port, the domain
validator and DTOs. Gateway implementations are provided by infrastructure
and must be injected from the composition root, keeping dependencies one-way.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.payments import PaymentInitialization, PaymentInitResult, PaymentTotal
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import BusinessException, PaymentValidationException
from domain.payment.entity import (
    MobileMoneyProvider,
    PaymentMethod,
    PaymentRequest,
    PaymentSnapshot,
    generate_payment_reference,
)
from domain.payment.fees import calculate_fee
from domain.payment.validator import PaymentRequestValidator, ValidatorConfig


logger = get_logger(__name__)


class PaymentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        *,
        settings: Optional[PaymentSettings] = None,
        validator: Optional[PaymentRequestValidator] = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or payment_settings
        self.validator = validator or PaymentRequestValidator(ValidatorConfig.from_settings(self.settings))

    def calculate_payment_total(self, amount: Any) -> PaymentTotal:
        fee = calculate_fee(amount, self.settings.platform_fee_percentage)
        return PaymentTotal(
            base_amount=fee.gross_amount,
            platform_fee=fee.platform_fee,
            total_amount=fee.gross_amount,
            provider_receives=fee.net_amount,
        )

    async def initialize_payment(self, request: PaymentRequest) -> PaymentInitResult:
        """Validate, assign a reference and hand the payment to the gateway.

        Raises PaymentValidationException (with every failing check) before
        any network call is made.
        """
        result = self.validator.validate(request)
        if not result.valid:
            logger.info("payment_request_rejected", errors=[e.value for e in result.errors])
            raise PaymentValidationException(result.errors)

        reference = generate_payment_reference()
        req = PaymentInitialization(
            reference=reference,
            amount=result.fee.gross_amount,
            currency=self.settings.currency_code,
            email=request.email,
            name=request.name.strip(),
            description=request.description.strip(),
            phone=request.phone or "",
            payment_method=request.payment_method,
            provider=request.provider,
            callback_url=self.settings.callback_url,
            metadata=dict(request.metadata or {}),
        )
        logger.info(
            "payment_initialize_request",
            reference=reference,
            provider=self.gateway.provider,
            amount=str(req.amount),
            platform_fee=str(result.fee.platform_fee),
        )
        try:
            intent = await self.gateway.initialize_payment(req)
        except BusinessException as exc:
            logger.error("payment_initialize_failed", reference=reference, error=exc.message)
            return PaymentInitResult(success=False, reference=reference, error=exc.message)
        logger.info("payment_initialize_response", reference=reference, success=intent.success)
        return intent

    async def process_mobile_money_payment(
        self,
        *,
        amount: Any,
        phone: str,
        provider: MobileMoneyProvider,
        email: str,
        name: str,
        description: str,
    ) -> PaymentInitResult:
        return await self.initialize_payment(
            PaymentRequest(
                amount=amount,
                email=email,
                name=name,
                description=description,
                phone=phone,
                payment_method=PaymentMethod.MOBILE_MONEY,
                provider=provider,
                metadata={"payment_type": PaymentMethod.MOBILE_MONEY.value, "provider": getattr(provider, "value", provider)},
            )
        )

    async def process_card_payment(
        self,
        *,
        amount: Any,
        email: str,
        name: str,
        description: str,
        phone: Optional[str] = None,
    ) -> PaymentInitResult:
        return await self.initialize_payment(
            PaymentRequest(
                amount=amount,
                email=email,
                name=name,
                description=description,
                phone=phone or "",
                payment_method=PaymentMethod.CARD,
                metadata={"payment_type": PaymentMethod.CARD.value},
            )
        )

    async def verify_payment(self, reference: str) -> PaymentSnapshot:
        logger.info("payment_verify_request", reference=reference, provider=self.gateway.provider)
        return await self.gateway.verify_payment(reference)

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
