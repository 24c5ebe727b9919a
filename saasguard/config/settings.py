"""Runtime settings for saasguard."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class SaasGuardSettings(BaseSettings):
    """Main configuration for saasguard."""

    model_config = SettingsConfigDict(
        env_prefix="SAASGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines instead of console output"
    )

    database_path: Path = Field(
        default=Path("./saasguard.db"),
        description="Path to the SQLite record store"
    )

    encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key used to decrypt stored IdP client secrets"
    )

    default_sync_interval: int = Field(
        default=3600,
        description="Seconds between IdP syncs when a provider sets none"
    )

    min_sync_interval: int = Field(
        default=300,
        description="Lower bound for any provider sync interval, in seconds"
    )

    report_dir: Optional[Path] = Field(
        default=None,
        description="Directory where offboarding audit reports are written"
    )

    # Auto-revocation
    auto_revoke_enabled: bool = Field(
        default=False,
        description="Enable automatic revocation of unapproved access"
    )

    auto_revoke_dry_run: bool = Field(
        default=True,
        description="Report revocations without performing them"
    )

    auto_revoke_grace_period_hours: int = Field(
        default=24,
        description="Hours a non-critical violation waits before revocation"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {', '.join(valid_levels)}")
        return v

    @field_validator("min_sync_interval")
    @classmethod
    def validate_min_sync_interval(cls, v: int) -> int:
        if v < 60:
            raise ValueError("min_sync_interval must be at least 60 seconds")
        return v

    @model_validator(mode='after')
    def validate_production_settings(self) -> 'SaasGuardSettings':
        """Validate production-specific settings."""
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                raise ValueError("Log level should not be DEBUG in production")
            if not self.encryption_key:
                raise ValueError("encryption_key is required in production")
        return self

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Args:
            mask_secrets: If True, mask sensitive values

        Returns:
            Dictionary representation of configuration
        """
        config_dict = self.model_dump(mode="json")

        if mask_secrets and config_dict.get("encryption_key"):
            config_dict["encryption_key"] = "***MASKED***"

        return config_dict


# Global settings instance
_global_settings: Optional[SaasGuardSettings] = None


def get_settings() -> SaasGuardSettings:
    """
    Get the global settings instance.

    Creates one from environment variables and defaults on first use.
    """
    global _global_settings
    if _global_settings is None:
        _global_settings = SaasGuardSettings()
    return _global_settings


def set_settings(settings: Optional[SaasGuardSettings]) -> None:
    """Replace the global settings instance (None resets it)."""
    global _global_settings
    _global_settings = settings
