"""Application configuration."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Comma-separated; rotated on rate limits.
    provider_api_keys: str = Field(..., alias="PROVIDER_API_KEYS")
    # Comma-separated fallback order, first is preferred.
    provider_models: str = Field(..., alias="PROVIDER_MODELS")
    provider_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="PROVIDER_BASE_URL",
    )
    max_tool_depth: int = Field(default=10, ge=1, le=50, alias="MAX_TOOL_DEPTH")
    max_retries: int = Field(default=3, ge=0, le=20, alias="MAX_RETRIES")
    retry_base_delay_seconds: float = Field(default=2.0, ge=0.0, alias="RETRY_BASE_DELAY_SECONDS")
    rate_limit_minute_seconds: float = Field(default=120.0, alias="RATE_LIMIT_MINUTE_SECONDS")
    rate_limit_day_seconds: float = Field(default=86400.0, alias="RATE_LIMIT_DAY_SECONDS")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def _split(value: str) -> list[str]:
    items = [item.strip() for item in value.split(",")]
    return list(dict.fromkeys(item for item in items if item and not item.startswith("your_")))


def api_keys(settings: Settings) -> list[str]:
    """Configured API keys without blanks, placeholders or duplicates."""

    return _split(settings.provider_api_keys)


def models(settings: Settings) -> list[str]:
    """Configured models in fallback order."""

    return _split(settings.provider_models)
