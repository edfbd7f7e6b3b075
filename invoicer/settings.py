from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class BillingSettings(BaseSettings):
    """Plan limits and metering switches, read from BILLING_* env vars."""

    enabled: bool = True
    feature_stripe: bool = False
    free_monthly_doc_limit: int = 10
    pro_monthly_doc_limit: int = 1000
    grace_units_document: int = 3
    free_daily_pdf_limit: int = 5
    pro_daily_pdf_limit: int = 500
    grace_units_pdf: int = 0
    warn_percent: float = 0.8
    timezone: str = "UTC"
    upgrade_url: str = "/billing/checkout"

    class Config:
        env_prefix = "BILLING_"
        env_file = ".env"
        extra = "ignore"
        case_sensitive = False

    @field_validator("warn_percent")
    @classmethod
    def clamp_warn_percent(cls, value: float) -> float:
        return min(max(value, 0.0), 0.99)

    @field_validator("grace_units_document", "grace_units_pdf")
    @classmethod
    def non_negative_grace(cls, value: int) -> int:
        return max(0, value)


class StripeSettings(BaseSettings):
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_price_pro_monthly: str | None = None
    app_base_url: str | None = None
    stripe_timeout_seconds: float = 30.0

    class Config:
        env_prefix = ""
        env_file = ".env"
        extra = "ignore"
        case_sensitive = False


@lru_cache
def get_billing_settings() -> BillingSettings:
    return BillingSettings()


@lru_cache
def get_stripe_settings() -> StripeSettings:
    return StripeSettings()


class TelemetrySettings(BaseSettings):
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "invoicer"
    otel_excluded_urls: str = "healthz,readyz,metrics"

    class Config:
        env_file = ".env"
        extra = "ignore"
        case_sensitive = False
