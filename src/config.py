"""Application configuration using pydantic-settings pattern."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Progressive Recognition Service"
    app_version: str = "0.1.0"
    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Database (Turso)
    turso_database_url: str | None = Field(default=None)
    turso_auth_token: str | None = Field(default=None)

    # Recognition cache
    recognition_cache_ttl_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="How long a recognition result stays valid for one form session",
    )
    recognition_cache_max_entries: int = Field(default=5000, ge=1)
    recognition_cache_sweep_seconds: float = Field(default=15.0, gt=0.0)

    # Recognition engine
    identity_store_timeout_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Candidate lookups slower than this degrade to create_new",
    )
    audit_redaction_salt: str = Field(
        default="recognition-audit",
        description="Salt mixed into redacted candidate identifiers",
    )

    # Review workflow
    reject_confidence_penalty: int = Field(default=30, ge=0, le=100)
    confirm_confidence_boost: int = Field(default=10, ge=0, le=100)
    decline_confidence_penalty: int = Field(default=20, ge=0, le=100)

    # Rate limiting (applied by the API layer)
    recognition_rate_limit: int = Field(default=100, ge=1)
    recognition_rate_window_seconds: int = Field(default=900, ge=1)
    admin_rate_limit: int = Field(default=20, ge=1)
    admin_rate_window_seconds: int = Field(default=600, ge=1)

    # Access control: tenant id -> API key. Admin keys open the review
    # queue and analytics; public keys only the recognition routes.
    tenant_api_keys: dict[str, str] = Field(default_factory=dict)
    tenant_admin_keys: dict[str, str] = Field(default_factory=dict)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
