"""
Tenant Authorization Engine Configuration
Environment-driven settings for the policy evaluator, audit writer and storage
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "tenant-authz"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./tenant_authz.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Audit trail
    audit_async: bool = Field(default=True, description="Hand audit writes to a background writer")
    audit_max_pending: int = Field(default=10000, description="Pending audit writes before new entries are dropped")
    audit_flush_timeout_seconds: float = 5.0

    # Reporting surface
    default_page_size: int = 50
    max_page_size: int = 500

    # Evaluation
    slow_evaluation_ms: int = 50

    # Request context (set by the upstream routing and authentication layers)
    tenant_header: str = "X-Tenant-ID"
    actor_header: str = "X-Actor-ID"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator("audit_max_pending", "default_page_size", "max_page_size")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be a positive integer")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unsupported log level: {v}")
        return level

    model_config = SettingsConfigDict(env_file=".env", env_prefix="TENANT_AUTHZ_", extra="allow")


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()
