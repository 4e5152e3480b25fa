"""
Access Control Settings

Centralized configuration using Pydantic Settings with environment variable support.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TEST = "test"
    STAGING = "staging"
    PRODUCTION = "production"


class FieldPermissionDefault(str, Enum):
    """Visibility of fields for resource types with no field configuration."""
    OPEN = "open"
    CLOSED = "closed"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supports .env file loading and provides sensible defaults for development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application Configuration
    # ==========================================================================

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    log_json: bool = Field(
        default=False,
        description="Render log lines as JSON instead of console output"
    )

    # ==========================================================================
    # Policy Evaluation
    # ==========================================================================

    default_policy_priority: int = Field(
        default=100,
        description="Priority given to policies created without one"
    )

    slow_evaluation_threshold_ms: float = Field(
        default=100.0,
        description="Evaluations slower than this are logged as warnings"
    )

    empty_resource_types_match_any: bool = Field(
        default=True,
        description=(
            "Whether a policy with no resource types but with resource "
            "attribute conditions applies to every resource type"
        )
    )

    field_permissions_default: FieldPermissionDefault = Field(
        default=FieldPermissionDefault.OPEN,
        description="Field visibility for resource types without field permissions"
    )

    # ==========================================================================
    # Evaluation Cache
    # ==========================================================================

    policy_cache_enabled: bool = Field(
        default=True,
        description="Cache evaluation results per context and policy-set version"
    )

    policy_evaluation_cache_ttl: int = Field(
        default=300,
        description="Evaluation cache TTL in seconds"
    )

    policy_cache_max_entries: int = Field(
        default=10_000,
        description="Maximum cached evaluation results"
    )

    # ==========================================================================
    # Storage and Audit
    # ==========================================================================

    policy_store_path: Optional[str] = Field(
        default=None,
        description="JSON file used to persist policies (in-memory when unset)"
    )

    audit_log_path: Optional[str] = Field(
        default=None,
        description="JSON-lines file receiving audit entries"
    )

    audit_max_entries: int = Field(
        default=10_000,
        description="Maximum audit entries kept in memory"
    )

    # ==========================================================================
    # Validators
    # ==========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @field_validator("policy_evaluation_cache_ttl", "policy_cache_max_entries", "audit_max_entries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Cache and audit sizes must be positive."""
        if v <= 0:
            raise ValueError("Value must be greater than zero")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def fields_open_by_default(self) -> bool:
        """Whether unconfigured resource types expose every field."""
        return self.field_permissions_default == FieldPermissionDefault.OPEN


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
