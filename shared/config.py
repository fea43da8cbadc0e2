"""
Shared configuration management for the storefront shipping service.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SHIPPING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="development")
    log_level: str = Field(default="info")

    # Carrier credentials and endpoints
    carrier_client_id: str = Field(default="")
    carrier_client_secret: str = Field(default="")
    carrier_environment: str = Field(default="testing")
    carrier_timeout_seconds: float = Field(default=10.0, gt=0)
    token_safety_margin_seconds: int = Field(default=300, ge=0)
    # Upper bound for one quote including any token refresh it triggers
    rate_call_timeout_seconds: float = Field(default=20.0, gt=0)

    # Warehouse and rate selection
    origin_zip: str = Field(default="66217")
    default_mail_class: Optional[str] = Field(default=None)
    include_first_class: bool = Field(default=False)

    # Quote cache
    rate_cache_ttl_seconds: float = Field(default=300, gt=0)
    rate_cache_sweep_interval_seconds: float = Field(default=60, gt=0)

    # Rate limiting
    rate_limiting_enabled: bool = Field(default=True)
    rate_limit_profile: Optional[str] = Field(default=None)
    rate_limit_sweep_interval_seconds: int = Field(default=300, gt=0)

    @model_validator(mode="after")
    def _default_rate_limit_profile(self) -> "BaseConfig":
        # Development gets generous quotas unless a profile is set explicitly
        if self.rate_limit_profile is None:
            self.rate_limit_profile = "permissive" if self.env == "development" else "strict"
        return self


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
