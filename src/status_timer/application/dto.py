"""
Status Timer Application DTOs
==============================

Data Transfer Objects for the status timer admin API.

These Pydantic models handle serialization for API responses.
Following YAGNI - only what's needed.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from config import Dimension
from status_timer.application.services import ReconcileResult, SweepResult
from status_timer.domain import ThresholdPolicy, TrackingRecord, TrackingTable


# ========== Request DTOs ==========

class ThresholdUpdateRequest(BaseModel):
    """Request model for a runtime threshold change."""
    minutes: Optional[int] = Field(
        ...,
        ge=1,
        description="New threshold in minutes; null disables tracking for the status"
    )


# ========== Response DTOs ==========

class TrackedIssueResponse(BaseModel):
    """Response model for one tracked (dimension, issue) pair."""
    issue_key: str
    dimension: Dimension
    status: str
    summary: Optional[str] = None
    assignee: Optional[str] = None
    start_time: datetime
    last_alert_time: Optional[datetime] = None
    elapsed_minutes: int = Field(..., description="Whole minutes in the current status")
    threshold_minutes: Optional[int] = Field(None, description="Null when tracking is disabled")


class TrackingTableResponse(BaseModel):
    """Response model for the full tracking table."""
    counts: Dict[str, int]
    records: List[TrackedIssueResponse] = Field(default_factory=list)


class SweepResponse(BaseModel):
    checked: int
    alerts_sent: int
    cleared: int
    errors: int


class ReconcileResponse(BaseModel):
    issues_seen: int
    tracked: Dict[str, int]
    dropped: int
    fallback: bool = Field(..., description="True when Jira was unreachable and the local snapshot was kept")


class ClearResponse(BaseModel):
    cleared: int


class ThresholdConfigResponse(BaseModel):
    default_minutes: int
    primary_status: Dict[str, Optional[int]]
    lifecycle_status: Dict[str, Optional[int]]
    disabled_lifecycle_statuses: List[str]
    gated_status: str


# ========== Mappers ==========

def _whole_minutes(delta: Optional[timedelta]) -> Optional[int]:
    if delta is None:
        return None
    return int(delta.total_seconds() // 60)


def tracked_issue_response(
    dimension: Dimension,
    issue_key: str,
    record: TrackingRecord,
    policy: ThresholdPolicy,
    now: datetime
) -> TrackedIssueResponse:
    return TrackedIssueResponse(
        issue_key=issue_key,
        dimension=dimension,
        status=record.status,
        summary=record.issue.summary,
        assignee=record.issue.assignee,
        start_time=record.start_time,
        last_alert_time=record.last_alert_time,
        elapsed_minutes=_whole_minutes(record.elapsed(now)),
        threshold_minutes=_whole_minutes(
            policy.resolve_threshold(dimension, record.status, record.issue)
        ),
    )


def tracking_table_response(
    table: TrackingTable,
    policy: ThresholdPolicy,
    now: datetime
) -> TrackingTableResponse:
    return TrackingTableResponse(
        counts=table.counts(),
        records=[
            tracked_issue_response(dimension, issue_key, record, policy, now)
            for dimension, issue_key, record in table.items()
        ],
    )


def sweep_response(result: SweepResult) -> SweepResponse:
    return SweepResponse(
        checked=result.checked,
        alerts_sent=result.alerts_sent,
        cleared=result.cleared,
        errors=result.errors,
    )


def reconcile_response(result: ReconcileResult) -> ReconcileResponse:
    return ReconcileResponse(
        issues_seen=result.issues_seen,
        tracked=result.tracked,
        dropped=result.dropped,
        fallback=result.fallback,
    )
