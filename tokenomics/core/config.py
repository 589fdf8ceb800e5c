"""Application configuration.

Environment variables are loaded from .env file and can be overridden.
All settings have sensible defaults for local development.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _valkey_alias(env_name: str) -> AliasChoices:
    """Support both REDIS_* and VALKEY_* env var names for compatibility."""
    valkey_name = env_name.replace("REDIS_", "VALKEY_")
    return AliasChoices(env_name, valkey_name)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # Infrastructure
    # ==========================================================================

    environment: str = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Deployment environment: 'development', 'staging', or 'production'.",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    use_redis: bool = Field(default=False, alias="USE_REDIS")
    valkey_url: str | None = Field(
        default=None,
        validation_alias=_valkey_alias("REDIS_URL"),
        description="Distributed cache URL. Setting it enables the distributed tier.",
    )

    # ==========================================================================
    # Cache
    # ==========================================================================

    cache_default_ttl_seconds: int = Field(
        default=300, alias="CACHE_DEFAULT_TTL", ge=1
    )
    cache_namespace: str = Field(
        default="tokenomics", alias="CACHE_NAMESPACE", min_length=1
    )
    cache_memory_max_size: int = Field(
        default=1000, alias="CACHE_MEMORY_MAX_SIZE", ge=1
    )

    # Coin market data: prices move quickly
    coin_cache_ttl_seconds: int = Field(default=120, alias="COIN_CACHE_TTL_SECONDS")
    coin_cache_refresh_seconds: int = Field(
        default=60, alias="COIN_CACHE_REFRESH_SECONDS"
    )

    # Search and top-coin listings
    search_cache_ttl_seconds: int = Field(
        default=300, alias="SEARCH_CACHE_TTL_SECONDS"
    )
    search_cache_refresh_seconds: int = Field(
        default=120, alias="SEARCH_CACHE_REFRESH_SECONDS"
    )

    # Exchange rates change less frequently
    exchange_rate_cache_ttl_seconds: int = Field(
        default=600, alias="EXCHANGE_RATE_CACHE_TTL_SECONDS"
    )
    exchange_rate_cache_refresh_seconds: int = Field(
        default=300, alias="EXCHANGE_RATE_CACHE_REFRESH_SECONDS"
    )

    # ==========================================================================
    # Resilience
    # ==========================================================================

    dedup_max_age_seconds: float = Field(
        default=5.0, alias="DEDUP_MAX_AGE_SECONDS", gt=0.0
    )
    retry_max_retries: int = Field(default=3, alias="RETRY_MAX_RETRIES", ge=0)
    retry_initial_delay_seconds: float = Field(
        default=1.0, alias="RETRY_INITIAL_DELAY_SECONDS", ge=0.0
    )
    retry_max_delay_seconds: float = Field(
        default=10.0, alias="RETRY_MAX_DELAY_SECONDS", ge=0.0
    )

    # ==========================================================================
    # Upstream APIs
    # ==========================================================================

    coingecko_api_url: str = Field(
        default="https://api.coingecko.com/api/v3", alias="COINGECKO_API_URL"
    )
    coingecko_api_key: str | None = Field(default=None, alias="COINGECKO_API_KEY")
    coingecko_timeout_seconds: float = Field(
        default=10.0, alias="COINGECKO_TIMEOUT_SECONDS", gt=0.0
    )
    exchange_rate_api_url: str = Field(
        default="https://api.exchangerate-api.com/v4/latest",
        alias="EXCHANGE_RATE_API_URL",
    )

    # ==========================================================================
    # CORS
    # ==========================================================================

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_origin_regex: str | None = Field(
        default=None, alias="CORS_ALLOW_ORIGIN_REGEX"
    )

    # ==========================================================================
    # OpenTelemetry (optional)
    # ==========================================================================

    otel_enabled: bool = Field(default=False, alias="OTEL_ENABLED")
    otel_service_name: str = Field(
        default="tokenomics-backend", alias="OTEL_SERVICE_NAME"
    )
    otel_service_version: str = Field(default="0.1.0", alias="OTEL_SERVICE_VERSION")
    otel_exporter_otlp_endpoint: str = Field(
        default="http://localhost:4317", alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )
    otel_exporter_otlp_headers: str | None = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_HEADERS"
    )

    # ==========================================================================
    # Pydantic Settings Config
    # ==========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # Validators
    # ==========================================================================

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: Any) -> list[str]:
        """Parse comma-separated CORS origins, rejecting wildcard '*'."""
        if isinstance(value, str):
            if not value:
                return []
            parsed = [item.strip() for item in value.split(",") if item.strip()]
        else:
            parsed = list(value) if value is not None else []

        if "*" in parsed:
            raise ValueError(
                "Wildcard CORS origin '*' is not allowed. "
                "Specify explicit origins like 'http://localhost:3000'."
            )
        return parsed

    @model_validator(mode="after")
    def validate_cache_windows(self) -> "Settings":
        """Every refresh interval must fall inside its TTL."""
        for prefix in ("coin", "search", "exchange_rate"):
            ttl = getattr(self, f"{prefix}_cache_ttl_seconds")
            refresh = getattr(self, f"{prefix}_cache_refresh_seconds")
            if ttl <= 0:
                raise ValueError(f"{prefix}_cache_ttl_seconds must be positive: {ttl}")
            if refresh < 0 or refresh >= ttl:
                raise ValueError(
                    f"{prefix}_cache_refresh_seconds must be in [0, {ttl}): {refresh}"
                )
        return self

    @property
    def distributed_cache_enabled(self) -> bool:
        """The distributed tier is used when explicitly enabled or a URL is set."""
        return self.use_redis or self.valkey_url is not None

    @property
    def effective_valkey_url(self) -> str:
        return self.valkey_url or "redis://localhost:6379/0"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
