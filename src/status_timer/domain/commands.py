"""
Tracking Commands
=================

Explicit inbound commands consumed by the TrackingManager.

Transport adapters (Jira webhooks, slash commands) translate their payloads
into these, keeping parsing out of the tracking state machine.
"""

from dataclasses import dataclass
from typing import Optional, Union

from config import Dimension
from status_timer.domain.entities import IssueSnapshot


@dataclass(frozen=True)
class StatusChanged:
    """A status value moved; the old timer is discarded and a new one may start."""
    issue_key: str
    dimension: Dimension
    from_value: Optional[str]
    to_value: Optional[str]
    issue: IssueSnapshot


@dataclass(frozen=True)
class AssigneeChanged:
    """
    The assignee changed.

    Only matters while the issue sits in the assignee-gated lifecycle status.
    """
    issue_key: str
    from_assignee: Optional[str]
    to_assignee: Optional[str]
    lifecycle_status: Optional[str]
    issue: IssueSnapshot


@dataclass(frozen=True)
class IssueDeleted:
    issue_key: str


TrackingCommand = Union[StatusChanged, AssigneeChanged, IssueDeleted]
