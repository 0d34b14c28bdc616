"""
Shared configuration management for 254Carbon Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    postgres_dsn: str = Field(default="postgres://localhost:5432/access")

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318")
    enable_console_tracing: bool = Field(default=False)

    # Entity access service
    entity_cache_max_size: int = Field(default=10000, gt=0)
    entity_cache_ttl_seconds: float = Field(default=300.0, gt=0)
    entity_admin_permission: str = Field(default="admin", min_length=1)
    entity_batch_max_size: int = Field(default=100, gt=0)
    entity_batch_concurrency: int = Field(default=100, gt=0)
    entity_lookup_backend: str = Field(default="memory", pattern="^(memory|postgres)$")
    entity_policies_file: Optional[str] = Field(default=None)


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
