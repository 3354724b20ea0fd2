"""Runtime settings for SaaSGuard."""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class SaaSGuardConfig(BaseSettings):
    """Main configuration for SaaSGuard."""

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

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    log_json: bool = Field(
        default=True,
        description="Render logs as JSON lines"
    )

    default_timezone: str = Field(
        default="UTC",
        description="Timezone used for daily execution caps when a tenant has no override"
    )

    tenant_timezones: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-tenant IANA timezone overrides, e.g. {\"acme\": \"Europe/Berlin\"}"
    )

    policy_file: Optional[Path] = Field(
        default=None,
        description="YAML file with tenant automation policies"
    )

    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for policy notifications"
    )

    slack_channel: Optional[str] = Field(
        default=None,
        description="Slack channel override"
    )

    webhook_url: Optional[str] = Field(
        default=None,
        description="Generic webhook URL receiving policy notifications"
    )

    notification_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for outbound notification calls"
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

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the default timezone is a known IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("tenant_timezones")
    @classmethod
    def validate_tenant_timezones(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Validate every tenant timezone override."""
        for tenant_id, tz_name in v.items():
            try:
                ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone for tenant {tenant_id}: {tz_name}")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "SaaSGuardConfig":
        """Validate production-specific settings."""
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError("Debug mode must be disabled in production")
            if self.log_level == "DEBUG":
                raise ValueError("Log level should not be DEBUG in production")
        return self

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Export configuration as a dictionary.

        Args:
            mask_secrets: Replace webhook URLs with a placeholder

        Returns:
            Configuration values keyed by field name
        """
        data = self.model_dump(mode="json")
        if mask_secrets:
            for key in ("slack_webhook_url", "webhook_url"):
                if data.get(key):
                    data[key] = "***"
        return data


_config: Optional[SaaSGuardConfig] = None


def get_config() -> SaaSGuardConfig:
    """Get the process-wide configuration instance."""
    global _config
    if _config is None:
        _config = SaaSGuardConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    global _config
    _config = None
