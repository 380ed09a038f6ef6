import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Outreach Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # CAMPAIGN DISPATCH
    campaign_dispatch_concurrency: int = Field(default=4, ge=1, le=8)
    channel_send_timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    default_channel: str = "telegram"
    whatsapp_graph_api_version: str = "v21.0"
    whatsapp_graph_api_base_url: str = "https://graph.facebook.com"
    telegram_api_base_url: str = "https://api.telegram.org"
    sms_api_base_url: str = "https://api.twilio.com/2010-04-01"

    # BILLING
    trial_days: int = Field(default=30, ge=1, le=365)
    subscription_period_days: int = Field(default=30, ge=1, le=366)
    subscription_price: float = Field(default=7.0, gt=0)
    subscription_currency: str = Field(default="USD", min_length=3, max_length=3)
    payment_provider_default: str = "stub"
    payment_webhook_secret: str = "dev-webhook-secret"
    checkout_success_url: str | None = None
    checkout_cancel_url: str | None = None
    voucher_rate_limit_requests: int = Field(default=30, ge=1)
    voucher_rate_limit_window_seconds: int = Field(default=60, ge=1)

    # MAINTENANCE
    maintenance_enabled: bool = True
    maintenance_interval_seconds: float = Field(default=900, gt=0, le=86_400)
    stalled_campaign_minutes: int = Field(default=30, ge=1, le=1440)

    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "checkout_success_url",
        "checkout_cancel_url",
        "cors_origin_regex",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("default_channel", "payment_provider_default", mode="before")
    @classmethod
    def normalize_keys(cls, value: str) -> str:
        return str(value or "").strip().lower()

    @field_validator("subscription_currency", mode="before")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return str(value or "").strip().upper()

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "change_me_please_to_a_long_random_string",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if self.payment_webhook_secret.strip() in {"", "dev-webhook-secret"}:
            raise ValueError("PAYMENT_WEBHOOK_SECRET must be set in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
