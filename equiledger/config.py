from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised application settings, sourced from environment variables or .env."""

    app_name: str = Field(default="EquiLedger")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    database_url: str = Field(alias="DATABASE_URL")
    direct_database_url: Optional[str] = Field(
        default=None,
        alias="DIRECT_DATABASE_URL",
        description="Optional direct Postgres connection string used for running migrations.",
    )
    auto_run_migrations: bool = Field(default=False, alias="AUTO_RUN_MIGRATIONS")

    gemini_api_key: Optional[str] = Field(
        default=None, alias="GEMINI_API_KEY", description="Google Generative AI key"
    )
    gemini_model: str = Field(default="gemini-2.5-flash", alias="GEMINI_MODEL")
    intent_timeout_seconds: float = Field(
        default=15.0,
        alias="INTENT_TIMEOUT_SECONDS",
        description="Upper bound for a single intent classification call.",
        gt=0,
    )
    max_message_length: int = Field(default=1000, alias="MAX_MESSAGE_LENGTH", ge=1)

    default_currency: str = Field(default="ZAR", alias="DEFAULT_CURRENCY", min_length=3, max_length=3)
    default_vat_rate: Decimal = Field(default=Decimal("0.15"), alias="DEFAULT_VAT_RATE", ge=0, lt=1)
    business_timezone: str = Field(default="Africa/Johannesburg", alias="BUSINESS_TIMEZONE")

    workflow_max_attempts: int = Field(default=3, alias="WORKFLOW_MAX_ATTEMPTS", ge=1)
    workflow_retry_base_delay_seconds: float = Field(
        default=1.0, alias="WORKFLOW_RETRY_BASE_DELAY_SECONDS", ge=0
    )

    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    telegram_webhook_secret: Optional[str] = Field(
        default=None, alias="TELEGRAM_WEBHOOK_SECRET"
    )
    backend_base_url: Optional[AnyHttpUrl] = Field(
        default=None,
        alias="BACKEND_BASE_URL",
        description="The public URL where FastAPI is reachable (used by Telegram and Twilio webhooks).",
    )
    telegram_register_webhook_on_start: bool = Field(
        default=False, alias="TELEGRAM_REGISTER_WEBHOOK_ON_START"
    )

    twilio_account_sid: Optional[str] = Field(default=None, alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: Optional[str] = Field(default=None, alias="TWILIO_AUTH_TOKEN")
    twilio_whatsapp_number: Optional[str] = Field(
        default=None,
        alias="TWILIO_WHATSAPP_NUMBER",
        description="Sender number registered with Twilio, without the whatsapp: prefix.",
    )

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached accessor so imports share a single settings instance."""
    return Settings()  # type: ignore[call-arg]
