"""
Status Timer Domain Layer
==========================

Domain layer for status-duration tracking.

Contains:
- Entities: IssueSnapshot, TrackingRecord, TrackingTable
- Value Objects: ThresholdConfig and the pure ThresholdPolicy
- Commands: StatusChanged, AssigneeChanged, IssueDeleted

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from status_timer.domain.entities import (
    IssueSnapshot,
    TrackingRecord,
    TrackingTable,
    utc_now,
    format_timestamp,
    parse_timestamp,
)
from status_timer.domain.value_objects import ThresholdConfig, ThresholdPolicy
from status_timer.domain.commands import (
    StatusChanged,
    AssigneeChanged,
    IssueDeleted,
    TrackingCommand,
)

__all__ = [
    # Entities
    "IssueSnapshot",
    "TrackingRecord",
    "TrackingTable",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
    # Value Objects
    "ThresholdConfig",
    "ThresholdPolicy",
    # Commands
    "StatusChanged",
    "AssigneeChanged",
    "IssueDeleted",
    "TrackingCommand",
]
