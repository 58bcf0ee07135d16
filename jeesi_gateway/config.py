"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 1800

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Jeesi Agent Gateway"
    api_version: str = "0.1.0"
    api_description: str = "Credit-metered chat proxy for Jeesi.ai agents"

    # Identity provider (Supabase Auth)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    identity_timeout_seconds: float = 10.0

    # Upstream AI completion gateway
    ai_gateway_url: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    ai_gateway_api_key: str = ""
    ai_gateway_timeout_seconds: float = 120.0

    # Agent defaults (preview mode and unset agent fields)
    default_model: str = "google/gemini-2.5-flash"
    default_temperature: float = 0.7
    default_max_tokens: int = 1000

    # Credit ledger
    default_credits: int = 5  # Granted when a balance row is created lazily
    credits_per_request: int = 1

    # Custom agent functions
    function_call_timeout_seconds: float = 10.0

    # Best-effort side channel (usage recording, key touch, webhooks)
    side_channel_max_pending: int = 1000
    side_channel_workers: int = 2
    side_channel_drain_timeout_seconds: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "jeesi-agent-gateway"
    deployment_environment: str = "production"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.credits_per_request <= 0:
            errors.append("CREDITS_PER_REQUEST must be positive")

        if self.default_credits < 0:
            errors.append("DEFAULT_CREDITS cannot be negative")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def supabase_user_endpoint(self) -> str:
        """Identity provider endpoint that exchanges a session token for a user."""
        return f"{self.supabase_url.rstrip('/')}/auth/v1/user"


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
