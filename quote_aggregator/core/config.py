"""
Configuration management for the Quote Aggregator.
Uses pydantic-settings for environment variable management.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceConfig(BaseModel):
    """Immutable service configuration resolved once at construction."""

    model_config = ConfigDict(frozen=True)

    cache_ttl: float = Field(default=300.0, gt=0, description="Cache entry lifetime in seconds")
    max_retries: int = Field(default=2, ge=0, description="Retries per provider call")
    retry_delay: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    batch_size: int = Field(default=10, ge=1, description="Symbols per batch chunk")
    rate_limit_delay: float = Field(default=1.0, ge=0, description="Pause between batch chunks in seconds")
    enable_mock_fallback: bool = Field(default=True, description="Append the synthetic provider to the chain")
    enable_metrics: bool = Field(default=True, description="Collect service metrics")
    use_yahoo_primary: bool = Field(default=False, description="Try Yahoo Finance before Alpha Vantage")
    cache_backend: Literal["memory", "redis"] = Field(default="memory")
    health_probe_symbol: str = Field(default="AAPL")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application metadata
    app_name: str = "Quote Aggregator"
    app_version: str = "1.0.0"
    debug: bool = False

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"

    # Provider credentials and priority
    alpha_vantage_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ALPHA_VANTAGE_API_KEY", "NEXT_PUBLIC_ALPHA_VANTAGE_API_KEY"),
    )
    use_yahoo_finance_primary: bool = False

    # Service behaviour
    cache_ttl_seconds: float = 300.0  # 5 minutes
    max_retries: int = 2
    retry_delay_seconds: float = 1.0
    batch_size: int = 10
    rate_limit_delay_seconds: float = 1.0
    enable_mock_fallback: bool = True
    enable_metrics: bool = True
    health_probe_symbol: str = "AAPL"

    # Cache backend
    cache_backend: str = "memory"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None

    # Provider tuning
    alpha_vantage_requests_per_minute: int = 5  # Free tier
    alpha_vantage_min_interval_seconds: float = 12.0
    alpha_vantage_timeout_seconds: float = 15.0
    yahoo_requests_per_minute: int = 100
    yahoo_timeout_seconds: float = 10.0
    yahoo_max_workers: int = 4

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {"json", "text"}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(sorted(valid_formats))}")
        return v.lower()

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        valid_backends = {"memory", "redis"}
        if v.lower() not in valid_backends:
            raise ValueError(f"cache_backend must be one of: {', '.join(sorted(valid_backends))}")
        return v.lower()

    @field_validator("health_probe_symbol")
    @classmethod
    def validate_probe_symbol(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("health_probe_symbol cannot be empty")
        return v.strip().upper()

    @property
    def has_alpha_vantage_key(self) -> bool:
        """The literal DEMO key is a placeholder, not a credential."""
        return bool(self.alpha_vantage_api_key) and self.alpha_vantage_api_key != "DEMO"

    def get_redis_url(self) -> str:
        """Get Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    def service_config(self) -> ServiceConfig:
        """Freeze the service-level knobs into a ServiceConfig."""
        return ServiceConfig(
            cache_ttl=self.cache_ttl_seconds,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay_seconds,
            batch_size=self.batch_size,
            rate_limit_delay=self.rate_limit_delay_seconds,
            enable_mock_fallback=self.enable_mock_fallback,
            enable_metrics=self.enable_metrics,
            use_yahoo_primary=self.use_yahoo_finance_primary,
            cache_backend=self.cache_backend,
            health_probe_symbol=self.health_probe_symbol,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, read once."""
    return Settings()
