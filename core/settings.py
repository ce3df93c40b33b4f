"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Each provider section resolves to either a frozen credentials object or an
``UnconfiguredProvider`` marker; adapters receive that value at construction
and never read the environment themselves.
"""
from __future__ import annotations

from typing import Optional, Union
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, ConfigDict, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs or CIDRs allowed to post callbacks
    # Read X-Forwarded-For / X-Real-IP; enable only behind a trusted proxy
    trust_proxy_headers: bool = False


class UnconfiguredProvider(BaseModel):
    """Marker for a provider whose required credentials are absent."""

    model_config = ConfigDict(frozen=True)

    provider: str
    missing: tuple[str, ...] = ()


class ClickCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_id: str
    merchant_id: str
    secret_key: str
    merchant_user_id: Optional[str] = None
    checkout_url: str
    api_url: str


class PaymeCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    merchant_id: str
    key: str
    checkout_url: str
    api_url: str


class UzumCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    merchant_id: str
    secret_key: str
    api_key: str
    base_url: str
    checkout_url: str
    webhook_url: Optional[str] = None


def _missing(section: BaseModel, names: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(name for name in names if not getattr(section, name))


class ClickSettings(BaseModel):
    service_id: Optional[str] = None
    merchant_id: Optional[str] = None
    merchant_user_id: Optional[str] = None
    secret_key: Optional[str] = None
    checkout_url: str = "https://my.click.uz/services/pay"
    api_url: str = "https://api.click.uz/v2/merchant"

    def credentials(self) -> Union[ClickCredentials, UnconfiguredProvider]:
        missing = _missing(self, ("service_id", "merchant_id", "secret_key"))
        if missing:
            return UnconfiguredProvider(provider="click", missing=missing)
        return ClickCredentials(
            service_id=self.service_id,
            merchant_id=self.merchant_id,
            merchant_user_id=self.merchant_user_id,
            secret_key=self.secret_key,
            checkout_url=self.checkout_url,
            api_url=self.api_url,
        )


class PaymeSettings(BaseModel):
    merchant_id: Optional[str] = None
    key: Optional[str] = None
    checkout_url: str = "https://checkout.paycom.uz"
    api_url: str = "https://checkout.paycom.uz/api"

    def credentials(self) -> Union[PaymeCredentials, UnconfiguredProvider]:
        missing = _missing(self, ("merchant_id", "key"))
        if missing:
            return UnconfiguredProvider(provider="payme", missing=missing)
        return PaymeCredentials(
            merchant_id=self.merchant_id,
            key=self.key,
            checkout_url=self.checkout_url,
            api_url=self.api_url,
        )


class UzumSettings(BaseModel):
    merchant_id: Optional[str] = None
    secret_key: Optional[str] = None
    api_key: Optional[str] = None
    base_url: str = "https://api.uzum.uz/v1"
    checkout_url: str = "https://payment.uzum.uz/pay"
    webhook_url: Optional[str] = None

    def credentials(self) -> Union[UzumCredentials, UnconfiguredProvider]:
        missing = _missing(self, ("merchant_id", "secret_key", "api_key"))
        if missing:
            return UnconfiguredProvider(provider="uzum", missing=missing)
        return UzumCredentials(
            merchant_id=self.merchant_id,
            secret_key=self.secret_key,
            api_key=self.api_key,
            base_url=self.base_url,
            checkout_url=self.checkout_url,
            webhook_url=self.webhook_url,
        )


class PaymentSettings(BaseSettings):
    default_currency: str = "UZS"
    # Provider wire amounts are major units times this factor (tiyin)
    minor_unit_factor: int = 100
    allow_cancel_after_fulfillment: bool = False
    frontend_url: str = "http://localhost:3000"

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    click: ClickSettings = Field(default_factory=ClickSettings)
    payme: PaymeSettings = Field(default_factory=PaymeSettings)
    uzum: UzumSettings = Field(default_factory=UzumSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @property
    def default_return_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/payment/success"

    @property
    def default_cancel_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/payment/cancel"


payment_settings = PaymentSettings()
