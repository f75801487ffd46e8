"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="campaign-status-timer", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port", ge=1, le=65535)

    # ========== Jira ==========
    jira_host: str = Field(
        default="example.atlassian.net",
        description="Jira Cloud host name, without scheme"
    )
    jira_email: str = Field(default="", description="Jira account email for basic auth")
    jira_api_token: str = Field(default="", description="Jira API token for basic auth")
    jira_project_key: str = Field(default="AS", description="Tracked Jira project key")
    jira_status_field: str = Field(
        default="customfield_10281",
        description="Custom single-select field holding the primary status"
    )
    jira_webhook_secret: Optional[str] = Field(
        default=None,
        description="Shared secret expected in the ?secret= query of Jira webhooks"
    )
    jira_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for Jira API calls",
        ge=0.1,
        le=60
    )
    reconcile_jql: str = Field(
        default='project = "{project}" AND statusCategory != Done',
        description="JQL used to find active issues during reconciliation"
    )

    # ========== Slack Integration ==========
    slack_bot_token: Optional[str] = Field(default=None, description="Slack bot token (xoxb-)")
    slack_signing_secret: Optional[str] = Field(
        default=None,
        description="Signing secret used to verify slash command requests"
    )
    slack_notification_channel: Optional[str] = Field(
        default=None,
        description="Channel receiving Jira status change notifications"
    )
    timer_alerts_channel: str = Field(
        default="C08F7C8RCV7",
        description="Channel receiving status timer alerts"
    )

    # ========== Status Timer ==========
    tracking_file_path: Path = Field(
        default=Path("data/tracking.json"),
        description="JSON document holding the tracking table"
    )
    tracking_lock_timeout_seconds: float = Field(
        default=2.0,
        description="Seconds to wait for the advisory lock before skipping a save",
        ge=0
    )
    threshold_config_path: Path = Field(
        default=Path("status_thresholds.yaml"),
        description="Path to the status threshold YAML file"
    )
    sweep_interval_seconds: int = Field(
        default=60,
        description="Seconds between alert sweeps (0 disables the scheduler)",
        ge=0
    )
    reconcile_on_startup: bool = Field(
        default=True,
        description="Rebuild the tracking table from Jira when the service starts"
    )

    # ========== Admin ==========
    admin_token: Optional[str] = Field(
        default=None,
        description="Token required in X-Admin-Token for /status-timer routes"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @property
    def jira_base_url(self) -> str:
        return f"https://{self.jira_host}"

    def issue_url(self, issue_key: str) -> str:
        """Browser link for an issue."""
        return f"{self.jira_base_url}/browse/{issue_key}"


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Dimension(str, Enum):
    """Independently timed status axes of an issue."""
    PRIMARY = "primaryStatus"        # custom single-select field
    LIFECYCLE = "lifecycleStatus"    # Jira workflow status


DIMENSIONS = [Dimension.PRIMARY, Dimension.LIFECYCLE]

# Friendly names accepted by /status-update, mapped to primary field options
PRIMARY_STATUS_ALIASES = {
    "ready": "🟢 Ready to Launch",
    "killed": "💀 Killed",
    "another chance": "🔁 Another Chance",
    "let it ride": "⚡ Let it Ride",
    "roll out": "✅ Roll Out",
    "phase complete": "✨ Phase Complete",
}
