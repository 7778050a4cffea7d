"""
Gateway settings using pydantic-settings v2 with nested env keys.

Every key is read as ``TELEBIRR__<SECTION>__<FIELD>``; for example
``TELEBIRR__SINGLE_MERCHANT__APP_SECRET``. The resulting object is frozen and
handed to components at construction time.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ApiSettings(_Frozen):
    base_url: str = "https://developerportal.ethiotelebirr.et:38443/apiaccess/payment/gateway"
    timeout: float = 60.0
    verify_ssl: bool = False


class MerchantCredentialSettings(_Frozen):
    fabric_app_id: Optional[str] = None
    merchant_app_id: Optional[str] = None
    merchant_code: Optional[str] = None
    app_secret: Optional[str] = None
    rsa_private_key: Optional[str] = None
    rsa_public_key: Optional[str] = None


class MerchantResolutionSettings(_Frozen):
    key_name: str = "merchant_id"
    legacy_branch_support: bool = True
    owner_mappings: dict[str, str] = Field(
        default_factory=lambda: {
            "branch_id": "branch",
            "store_id": "store",
            "organization_id": "organization",
            "company_id": "company",
            "location_id": "location",
        }
    )


class TokenCacheSettings(_Frozen):
    enabled: bool = True
    ttl: int = 3300  # 55 minutes
    prefix: str = "telebirr_token_"


class CacheSettings(_Frozen):
    tokens: TokenCacheSettings = Field(default_factory=TokenCacheSettings)


class WebhookSettings(_Frozen):
    secret: Optional[str] = None
    tolerance_seconds: int = 300
    path: str = "/api/v1/telebirr/webhook"
    notify_url: Optional[str] = None  # absolute URL sent in preorders; falls back to path
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks
    trust_forwarded_for: bool = False


class VerifyPaymentQueueSettings(_Frozen):
    enabled: bool = True
    backend: Literal["inline", "celery"] = "inline"
    queue: str = "telebirr"
    tries: int = 5
    timeout: int = 120
    retry_schedule: list[float] = Field(default_factory=lambda: [5, 5, 5, 5, 5])
    trigger_statuses: list[str] = Field(default_factory=lambda: ["Completed"])

    @field_validator("retry_schedule")
    @classmethod
    def _non_empty_schedule(cls, v: list[float]) -> list[float]:
        if not v:
            raise ValueError("retry_schedule must contain at least one delay")
        if any(d < 0 for d in v):
            raise ValueError("retry_schedule delays must be >= 0")
        return v

    @field_validator("tries")
    @classmethod
    def _positive_tries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("tries must be >= 1")
        return v


class QueueSettings(_Frozen):
    verify_payment: VerifyPaymentQueueSettings = Field(default_factory=VerifyPaymentQueueSettings)


class TransportRetry(_Frozen):
    attempts: int = 3
    backoff_seconds: float = 0.1


class SigningSettings(_Frozen):
    # PKCS#1 v1.5 changes the signature scheme; keep off unless the gateway accepts it.
    allow_pkcs1_fallback: bool = False


class AuthSettings(_Frozen):
    use_token_cache: bool = False


class LoggingSettings(_Frozen):
    enabled: bool = True
    sensitive_data: bool = False


class FeatureSettings(_Frozen):
    routes: bool = True
    auth: bool = False


class TelebirrSettings(BaseSettings):
    mode: Literal["single", "multi"] = "single"
    api: ApiSettings = Field(default_factory=ApiSettings)
    single_merchant: MerchantCredentialSettings = Field(default_factory=MerchantCredentialSettings)
    merchant: MerchantResolutionSettings = Field(default_factory=MerchantResolutionSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    retry: TransportRetry = Field(default_factory=TransportRetry)
    signing: SigningSettings = Field(default_factory=SigningSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    features: FeatureSettings = Field(default_factory=FeatureSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TELEBIRR__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
        frozen=True,
    )


telebirr_settings = TelebirrSettings()
