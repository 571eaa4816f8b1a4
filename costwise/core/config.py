"""
Configuration module with strict validation.

Key principles:
- APP STARTUP does NOT require any upstream API key
- BEA and EIA lookups DO require their keys (fail early with clear error)
- BLS key is optional; it only widens the upstream query limits
- HUD fair market rent service is public and needs no key
- Rate limits, timeouts and sweep intervals are configurable
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from costwise.core.api_errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings with validation.

    Loads from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (cache table + ZIP/CBSA crosswalk)
    database_url: str = Field(
        default="sqlite:///./costwise.db",
        description="SQLAlchemy connection URL for the cache and crosswalk tables"
    )

    # BEA API Configuration (OPTIONAL for startup, REQUIRED for price parity)
    bea_api_key: Optional[str] = Field(
        default=None,
        description="BEA API key (UserID) - required for regional price parity lookups"
    )

    # BLS API Configuration (OPTIONAL for startup, RECOMMENDED for CPI)
    bls_api_key: Optional[str] = Field(
        default=None,
        description="BLS API key - optional but recommended for higher rate limits"
    )

    # EIA API Configuration (OPTIONAL for startup, REQUIRED for energy prices)
    eia_api_key: Optional[str] = Field(
        default=None,
        description="EIA API key - required for energy price lookups"
    )

    # Upstream requests
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120.0,
        description="Fixed timeout for every upstream API call (no retries)"
    )

    max_concurrency: int = Field(
        default=4,
        ge=1,
        le=50,
        description="Maximum concurrent requests per upstream API client (capped per API by the registry)"
    )

    # Request-level rate limiting (fixed window, per client identifier)
    rate_limit_window_ms: int = Field(
        default=60_000,
        ge=1000,
        description="Fixed window length in milliseconds for upstream-backed endpoints"
    )

    rate_limit_max_requests: int = Field(
        default=30,
        ge=1,
        le=10_000,
        description="Maximum requests per window for upstream-backed endpoints"
    )

    # Maintenance
    cache_sweep_interval_seconds: int = Field(
        default=3600,
        ge=1,
        description="How often expired cache entries are deleted"
    )

    rate_limit_sweep_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="How often elapsed rate limit buckets are dropped"
    )

    enable_scheduler: bool = Field(
        default=True,
        description="Start the maintenance scheduler with the API process"
    )

    # Source-specific defaults
    cpi_lookback_years: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Years of monthly CPI points fetched for index calculations"
    )

    hud_fmr_year: int = Field(
        default=2024,
        ge=2000,
        le=2100,
        description="FMR fiscal year reported when the feature service omits it"
    )

    hud_batch_max_size: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum ZIP codes accepted by a single rent batch lookup"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # Testing
    run_integration_tests: bool = Field(
        default=False,
        description="Enable integration tests (requires API keys and network)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    def require_bea_api_key(self) -> str:
        """
        Get BEA API key, raising clear error if missing.

        Call this before building a BEA client.

        Raises:
            ConfigurationError: If the key is not configured

        Returns:
            str: The API key
        """
        if not self.bea_api_key:
            raise ConfigurationError(
                "BEA_API_KEY is required for regional price parity lookups. "
                "Please set it in your .env file or environment variables. "
                "Get a free key at: https://apps.bea.gov/api/signup/",
                source="bea",
                missing_config="bea_api_key",
            )
        return self.bea_api_key

    def get_bls_api_key(self) -> Optional[str]:
        """
        Get BLS API key if configured.

        BLS API key is optional but recommended for better rate limits:
        - Without key: 25 queries per day, 10 years per query
        - With key: 500 queries per day, 20 years per query

        Returns:
            Optional[str]: The API key if configured, None otherwise
        """
        return self.bls_api_key

    def require_eia_api_key(self) -> str:
        """
        Get EIA API key, raising clear error if missing.

        Raises:
            ConfigurationError: If the key is not configured

        Returns:
            str: The API key
        """
        if not self.eia_api_key:
            raise ConfigurationError(
                "EIA_API_KEY is required for energy price lookups. "
                "Please set it in your .env file or environment variables. "
                "Get a free key at: https://www.eia.gov/opendata/register.php",
                source="eia",
                missing_config="eia_api_key",
            )
        return self.eia_api_key


# Global settings instance (lazy-loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings (singleton).

    Creates the settings object on first call.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
