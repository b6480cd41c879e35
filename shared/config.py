"""
Shared configuration management for the Observer Access service.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="OBSERVER_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Storage
    storage_backend: Literal["postgres", "memory"] = Field(default="postgres")
    postgres_dsn: str = Field(default="postgres://localhost:5432/observer")
    postgres_min_pool_size: int = Field(default=2, ge=1)
    postgres_max_pool_size: int = Field(default=10, ge=1)
    postgres_connect_attempts: int = Field(default=5, ge=1)

    # Rule state persistence
    state_write_max_attempts: int = Field(default=3, ge=1)
    state_write_retry_base_delay: float = Field(default=0.05, ge=0.0)

    # Observability
    metrics_enabled: bool = Field(default=True)
    enable_rule_metrics: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
