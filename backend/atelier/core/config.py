"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PRODUCTION_ENVS = {"production", "prod"}


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Atelier Céramique API"
    api_prefix: str = "/api"

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    frontend_url: str | None = Field(default=None, alias="FRONTEND_URL")
    currency: str = Field("eur", alias="CURRENCY")
    gift_card_validity_days: int = Field(365, alias="GIFT_CARD_VALIDITY_DAYS")

    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int | None = Field(default=None, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, alias="SMTP_FROM")

    stripe_secret_key: str | None = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str | None = Field(
        default=None, alias="STRIPE_WEBHOOK_SECRET"
    )

    square_access_token: str | None = Field(default=None, alias="SQUARE_ACCESS_TOKEN")
    square_application_id: str | None = Field(
        default=None, alias="SQUARE_APPLICATION_ID"
    )
    square_location_id: str | None = Field(default=None, alias="SQUARE_LOCATION_ID")
    square_environment: str = Field("sandbox", alias="SQUARE_ENVIRONMENT")
    square_webhook_signature_key: str | None = Field(
        default=None, alias="SQUARE_WEBHOOK_SIGNATURE_KEY"
    )
    square_webhook_url: str | None = Field(default=None, alias="SQUARE_WEBHOOK_URL")

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in _PRODUCTION_ENVS

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
