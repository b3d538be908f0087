"""
Payment-related settings using pydantic-settings v2 with prefixed env keys.

Recognised variables (prefix ``PAYMENT_``, nested keys via ``__``):
``PAYMENT_API_BASE_URL``, ``PAYMENT_CURRENCY_CODE``, ``PAYMENT_COUNTRY_CODE``,
``PAYMENT_PLATFORM_FEE_PERCENTAGE``, ``PAYMENT_MIN_PAYMENT_AMOUNT``,
``PAYMENT_MAX_PAYMENT_AMOUNT``, ``PAYMENT_POLL_INTERVAL_MS``,
``PAYMENT_PENDING_TIMEOUT_MS``, ``PAYMENT_TIMEOUTS__READ`` ...
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class PaymentSettings(BaseSettings):
    default_provider: str = "lenco"
    api_base_url: str = "https://api.lenco.co/access/v2"
    public_key: Optional[str] = None
    callback_url: Optional[str] = None

    currency_code: str = "ZMW"
    country_code: str = "ZM"
    platform_fee_percentage: Decimal = Decimal("2")
    min_payment_amount: Decimal = Decimal("5")
    max_payment_amount: Decimal = Decimal("1000000")

    # Tracker timings
    poll_interval_ms: int = 5000
    pending_timeout_ms: int = 300_000

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    @field_validator("currency_code", "country_code")
    @classmethod
    def _upper_alpha(cls, v: str, info):
        u = (v or "").strip().upper()
        expected = 3 if info.field_name == "currency_code" else 2
        if len(u) != expected or not u.isalpha():
            raise ValueError(f"{info.field_name} must be {expected} letters")
        return u

    @field_validator("platform_fee_percentage")
    @classmethod
    def _fee_in_range(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v < 0 or v > 100:
            raise ValueError("platform_fee_percentage must be within [0, 100]")
        return v

    @field_validator("poll_interval_ms", "pending_timeout_ms")
    @classmethod
    def _positive_ms(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @model_validator(mode="after")
    def _validate_amount_bounds(self):
        if self.min_payment_amount <= 0:
            raise ValueError("min_payment_amount must be positive")
        if self.min_payment_amount > self.max_payment_amount:
            raise ValueError("min_payment_amount must not exceed max_payment_amount")
        return self

    @property
    def poll_interval(self) -> float:
        """Poll interval in seconds."""
        return self.poll_interval_ms / 1000.0

    @property
    def pending_timeout(self) -> float:
        """Pending deadline in seconds, measured from session start."""
        return self.pending_timeout_ms / 1000.0

    def is_configured(self) -> bool:
        """Gateway calls need both a base URL and a public key."""
        return bool(self.api_base_url) and bool(self.public_key)


payment_settings = PaymentSettings()
