"""
Shared configuration management for the Skill Matrix services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CLASSIFICATION_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/skillmatrix")

    # Classification engine
    zero_total_policy: str = Field(default="nan", description="nan | zero")
    strict_rules: bool = Field(default=False, description="Reject rules that fail validation on save")
    seed_default_rules: bool = Field(default=True)
    seed_actor_id: str = Field(default="system", description="Recorded as creator of seeded rules")

    # Result cache
    result_cache_ttl: int = Field(default=300, ge=1)
    result_cache_enabled: bool = Field(default=True)

    # Metrics
    metrics_port: Optional[int] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
