"""
Status Timer Value Objects
===========================

Threshold configuration and the pure threshold policy.

Statuses are user-configurable in Jira and drift over time, so the policy
never rejects an unknown status: it falls back to a short default duration.
"""

from datetime import timedelta
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from config import Dimension
from status_timer.domain.entities import IssueSnapshot


def _default_primary_thresholds() -> Dict[str, Optional[int]]:
    return {
        "🟢 Ready to Launch": 2880,
        "⚡ Let it Ride": 2880,
        "✅ Roll Out": 2880,
        "✨ Phase Complete": 2880,
        "💀 Killed": 2880,
        "🔁 Another Chance": 2880,
    }


def _default_lifecycle_thresholds() -> Dict[str, Optional[int]]:
    return {
        "NEW REQUEST": 10,          # starts only once assigned
        "REQUEST REVIEW": 1200,     # 20 hours
        "READY TO SHIP": 1440,      # 24 hours
        "SUBMISSION REVIEW": 240,   # 4 hours
        "PHASE 1": 3120,            # 52 hours
        "PHASE 2": 4560,            # 76 hours
        "PHASE 3": 10080,           # 1 week
        "PHASE 4": 10080,           # 1 week
        "PHASE COMPLETE": None,
        "FAILED": None,
    }


class ThresholdConfig(BaseModel):
    """
    Threshold configuration loaded from YAML.

    Values are minutes; ``null`` disables tracking for that status.
    Lifecycle keys are matched case-insensitively, primary keys verbatim.
    """
    default_minutes: int = Field(default=5, ge=1, description="Fallback for unmapped statuses")
    primary_status: Dict[str, Optional[int]] = Field(
        default_factory=_default_primary_thresholds,
        description="Minutes per primary status option"
    )
    lifecycle_status: Dict[str, Optional[int]] = Field(
        default_factory=_default_lifecycle_thresholds,
        description="Minutes per workflow status"
    )
    disabled_lifecycle_statuses: List[str] = Field(
        default_factory=list,
        description="Terminal workflow statuses that are never timed"
    )
    gated_status: str = Field(
        default="NEW REQUEST",
        description="Workflow status whose timer starts only once the issue has an assignee"
    )

    @field_validator("lifecycle_status")
    @classmethod
    def normalize_lifecycle_keys(cls, v: Dict[str, Optional[int]]) -> Dict[str, Optional[int]]:
        return {key.upper(): minutes for key, minutes in v.items()}

    @field_validator("disabled_lifecycle_statuses")
    @classmethod
    def normalize_disabled(cls, v: List[str]) -> List[str]:
        return [status.upper() for status in v]

    @field_validator("gated_status")
    @classmethod
    def normalize_gated(cls, v: str) -> str:
        return v.upper()

    @field_validator("primary_status", "lifecycle_status")
    @classmethod
    def validate_minutes(cls, v: Dict[str, Optional[int]]) -> Dict[str, Optional[int]]:
        for status, minutes in v.items():
            if minutes is not None and minutes <= 0:
                raise ValueError(f"threshold for {status!r} must be positive or null")
        return v


class ThresholdPolicy:
    """
    Pure threshold lookup.

    Reads configuration through a provider callable so a hot-reloaded
    config applies on the next call without rebuilding the policy.
    """

    def __init__(self, config_provider: Callable[[], ThresholdConfig]):
        self._config_provider = config_provider

    @property
    def config(self) -> ThresholdConfig:
        return self._config_provider()

    def resolve_threshold(
        self,
        dimension: Dimension,
        status_value: str,
        issue: Optional[IssueSnapshot] = None
    ) -> Optional[timedelta]:
        """
        Threshold for a status, or None when tracking is disabled.

        Args:
            dimension: Which status axis is being timed
            status_value: The status label as Jira reports it
            issue: Snapshot used for the assignee gate

        Returns:
            timedelta threshold, or None (disabled)
        """
        config = self.config

        if Dimension(dimension) == Dimension.PRIMARY:
            if status_value in config.primary_status:
                return self._to_delta(config.primary_status[status_value])
            return timedelta(minutes=config.default_minutes)

        normalized = status_value.upper()
        if normalized in config.disabled_lifecycle_statuses:
            return None
        if normalized == config.gated_status and not (issue and issue.has_assignee):
            return None
        if normalized in config.lifecycle_status:
            return self._to_delta(config.lifecycle_status[normalized])
        return timedelta(minutes=config.default_minutes)

    def is_gated(self, dimension: Dimension, status_value: str) -> bool:
        """True for the lifecycle status whose alert calls out assignee inaction."""
        return (
            Dimension(dimension) == Dimension.LIFECYCLE
            and status_value.upper() == self.config.gated_status
        )

    @staticmethod
    def _to_delta(minutes: Optional[int]) -> Optional[timedelta]:
        if minutes is None:
            return None
        return timedelta(minutes=minutes)
