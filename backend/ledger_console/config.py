"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Runtime
    environment: str = "development"

    # Database
    database_url: str | None = None

    # Cache / rate-limit counters
    redis_url: str | None = None

    # Identity provider
    identity_provider_url: str = "http://localhost:54321/auth/v1"
    identity_provider_api_key: str = ""
    identity_timeout_seconds: float = 3.0

    # Session cookies
    session_cookie_name: str = "sb-auth-token"
    session_cookie_max_age: int = 60 * 60 * 24 * 30
    session_chunk_size: int = 3180
    shared_cookie_domain: str | None = None

    # Ledger engine
    ledger_engine_url: str = "http://localhost:54321"
    internal_function_token: str = ""
    ledger_engine_timeout_seconds: float = 10.0

    # Notifications
    notification_url: str | None = None
    notification_timeout_seconds: float = 5.0

    # CSRF origin allow-list (empty disables the origin check)
    allowed_origins: list[str] = []

    # Access control
    force_readonly: bool = False
    conceal_inaccessible_ledgers: bool = False

    # Rate limiting (requests per window)
    default_rate_limit: int = 100
    rate_limit_window_seconds: int = 60

    # Audit sink retry policy
    audit_max_attempts: int = 3
    audit_retry_backoff_ms: int = 200

    # Request body limit (bytes)
    max_body_size: int = 1024 * 1024

    @property
    def is_production(self) -> bool:
        """Whether cookies must carry the Secure attribute."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
