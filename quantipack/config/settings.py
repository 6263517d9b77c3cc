"""
Application Settings for QuantiPackAI

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

    Stripe and identity-provider keys are optional: without them the
    billing endpoints fail fast while read-only ledger views keep working.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: Optional[str] = None
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Identity provider (JWT issuer)
    auth_jwks_url: Optional[str] = None
    auth_issuer: Optional[str] = None
    auth_audience: Optional[str] = None
    auth_jwt_secret: Optional[str] = None

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_webhook_tolerance_seconds: int = 300

    # Price IDs from the Stripe product catalog
    stripe_starter_monthly_price_id: Optional[str] = None
    stripe_starter_yearly_price_id: Optional[str] = None
    stripe_professional_monthly_price_id: Optional[str] = None
    stripe_professional_yearly_price_id: Optional[str] = None
    stripe_enterprise_price_id: Optional[str] = None

    # Entitlement rules
    free_tier_tokens: int = 5
    trial_days: int = 14
    token_reset_days: int = 30

    # Metadata keys carrying the identity subject on Stripe subscriptions
    webhook_subject_metadata_keys: list[str] = ["userId", "user_id", "clerk_user_id"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_entitlements(self) -> "Settings":
        """Reject nonsensical entitlement windows."""
        if self.free_tier_tokens < 0:
            raise ValueError("FREE_TIER_TOKENS must be >= 0")
        if self.trial_days <= 0 or self.token_reset_days <= 0:
            raise ValueError("TRIAL_DAYS and TOKEN_RESET_DAYS must be positive")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def stripe_configured(self) -> bool:
        """Whether a Stripe API key is present."""
        return bool(self.stripe_secret_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
