"""Service settings loaded from the environment (or a local .env file)."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


GATEWAY_BASE_URLS = {
    "sandbox": "https://cybqa.pesapal.com",
    "production": "https://www.pesapal.com",
}


class Settings(BaseSettings):
    """Explicit configuration struct handed to each component at construction."""

    # Application
    app_name: str = Field(default="storefront-payments", description="Service name")
    app_env: str = Field(default="development", description="development / production")
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Render logs as JSON lines")

    # Database
    database_url: str = Field(default="sqlite:///./payments.db", description="SQLAlchemy URL")

    # Payment aggregator
    gateway_environment: str = Field(default="sandbox", description="sandbox / production")
    gateway_base_url: Optional[str] = Field(default=None, description="Overrides the environment URL")
    gateway_consumer_key: str = Field(default="", description="Aggregator consumer key")
    gateway_consumer_secret: str = Field(default="", description="Aggregator consumer secret")
    gateway_notification_id: str = Field(default="", description="Registered IPN id")
    gateway_callback_url: str = Field(
        default="http://localhost:5173/payment/callback",
        description="Where the customer lands after checkout",
    )
    gateway_timeout: float = Field(default=30.0, description="HTTP timeout (seconds)")

    # Webhooks
    webhook_secret: str = Field(default="", description="Shared HMAC secret")
    webhook_verify: bool = Field(default=True, description="Verify webhook signatures")
    webhook_signature_headers: List[str] = Field(
        default=[
            "X-Signature",
            "X-IntaSend-Signature",
            "X-Hub-Signature-256",
            "X-Webhook-Signature",
        ],
        description="Headers searched (in order) for the webhook signature",
    )

    # Order defaults
    default_currency: str = Field(default="KES", description="Currency when none is given")
    default_country_code: str = Field(default="KE", description="Billing country code")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("gateway_environment")
    @classmethod
    def validate_gateway_environment(cls, v: str) -> str:
        v = v.lower()
        if v not in GATEWAY_BASE_URLS:
            raise ValueError(f"gateway_environment must be one of: {sorted(GATEWAY_BASE_URLS)}")
        return v

    @property
    def resolved_gateway_url(self) -> str:
        """Base URL of the aggregator API, honouring an explicit override."""
        if self.gateway_base_url:
            return self.gateway_base_url.rstrip("/")
        return GATEWAY_BASE_URLS[self.gateway_environment]


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()
