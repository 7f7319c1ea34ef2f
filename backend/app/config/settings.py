"""
Application Settings for the Entitlement Engine

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Gateway and database credentials are optional in development and
    testing so the engine can run against the in-process store; production
    refuses to start without them.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_api_version: str = "2023-10-16"

    # Gateway call bounds
    gateway_timeout_seconds: float = 10.0
    gateway_max_retries: int = 3
    retry_base_delay: float = 0.5
    retry_max_delay: float = 5.0

    # Ledger / entitlement behaviour
    default_currency: str = "USD"
    optimistic_retry_attempts: int = 5
    credit_expiry_warning_days: int = 7

    # Auth (token verification only; issuance lives elsewhere)
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_production_secrets(self) -> "Settings":
        """Require gateway and database credentials in production."""
        if self.is_production:
            missing = [
                name for name in ("stripe_secret_key", "stripe_webhook_secret", "database_url")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"Missing required production settings: {', '.join(missing).upper()}"
                )

        if self.optimistic_retry_attempts < 1:
            raise ValueError("OPTIMISTIC_RETRY_ATTEMPTS must be at least 1")

        self.default_currency = self.default_currency.upper()
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
