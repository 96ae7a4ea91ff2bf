"""Application configuration via pydantic settings."""

from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Court Booking Core API"
    api_v1_prefix: str = "/api/v1"

    database_url: str = Field(..., alias="DATABASE_URL")
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    secret_key: str = Field(default="", alias="SECRET_KEY")
    jwt_secret_key: str = Field(default="", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")
    open_play_enforcement_interval_seconds: int = Field(
        300, alias="OPEN_PLAY_ENFORCEMENT_INTERVAL_SECONDS"
    )
    waitlist_expiry_interval_seconds: int = Field(
        60, alias="WAITLIST_EXPIRY_INTERVAL_SECONDS"
    )
    waitlist_cleanup_interval_seconds: int = Field(
        3600, alias="WAITLIST_CLEANUP_INTERVAL_SECONDS"
    )
    package_expiry_interval_seconds: int = Field(
        3600, alias="PACKAGE_EXPIRY_INTERVAL_SECONDS"
    )

    cancellation_confirmation_window_minutes: int = Field(
        10, alias="CANCELLATION_CONFIRMATION_WINDOW_MINUTES"
    )
    waitlist_default_offer_expiry_minutes: int = Field(
        30, alias="WAITLIST_DEFAULT_OFFER_EXPIRY_MINUTES"
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:8080",
        ],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")
    cors_allowlist: list[str] = Field(default_factory=list, alias="CORS_ALLOWLIST")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[3] / ".env",
        case_sensitive=False,
    )

    def model_post_init(self, __context: Any) -> None:
        """Populate JWT secret from the generic secret when not provided."""

        if not self.jwt_secret_key:
            object.__setattr__(self, "jwt_secret_key", self.secret_key)

    @field_validator("cors_allow_origins", "cors_allowlist", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]
