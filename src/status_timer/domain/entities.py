"""
Status Timer Domain Entities
=============================

Pure Python domain entities for status-duration tracking.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from config import Dimension, DIMENSIONS


def utc_now() -> datetime:
    """Current UTC time truncated to the millisecond precision we persist."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    """Sortable ISO-8601 UTC form with milliseconds, e.g. 2025-01-01T10:00:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """
    Parse our own timestamps as well as Jira's (2024-01-15T10:00:00.000+0000).

    Raises:
        ValueError: If the text is not an ISO-8601 timestamp
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = datetime.strptime(text, "%Y-%m-%dT%H:%M:%S.%f%z")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class IssueSnapshot:
    """
    Minimal denormalized issue data.

    Enough to decide thresholds (assignee gate) and render alerts
    without a live fetch every sweep.
    """
    key: str
    summary: Optional[str] = None
    assignee: Optional[str] = None

    @property
    def has_assignee(self) -> bool:
        return self.assignee is not None

    def to_dict(self) -> dict:
        return {"key": self.key, "summary": self.summary, "assignee": self.assignee}

    @classmethod
    def from_jira(cls, issue: dict) -> "IssueSnapshot":
        """Build a snapshot from a Jira REST issue payload."""
        fields = issue.get("fields") or {}
        assignee = fields.get("assignee") or None
        if isinstance(assignee, dict):
            assignee = assignee.get("displayName") or assignee.get("accountId")
        return cls(key=issue["key"], summary=fields.get("summary"), assignee=assignee)


@dataclass
class TrackingRecord:
    """
    Timer for one (dimension, issue) pair.

    start_time is set once per status entry; only a clear+restart moves it.
    """
    status: str
    start_time: datetime
    issue: IssueSnapshot
    last_alert_time: Optional[datetime] = None

    def elapsed(self, now: datetime) -> timedelta:
        return now - self.start_time

    def since_last_alert(self, now: datetime, threshold: timedelta) -> timedelta:
        """Time since the last alert; a record never alerted counts as due."""
        if self.last_alert_time is None:
            return threshold
        return now - self.last_alert_time

    def is_alert_due(self, now: datetime, threshold: timedelta) -> bool:
        """Repeats roughly every threshold interval while the issue stays stuck."""
        return (
            self.elapsed(now) > threshold
            and self.since_last_alert(now, threshold) >= threshold
        )

    def mark_alerted(self, when: datetime) -> None:
        self.last_alert_time = when


@dataclass
class TrackingTable:
    """
    Runtime tracking state: one map per dimension from issue key to record.

    A key is present in a dimension iff that dimension is being timed for the
    issue. Only the TrackingManager mutates a live table.
    """
    records: Dict[Dimension, Dict[str, TrackingRecord]] = field(
        default_factory=lambda: {dimension: {} for dimension in DIMENSIONS}
    )

    def dimension(self, dimension: Dimension) -> Dict[str, TrackingRecord]:
        return self.records.setdefault(Dimension(dimension), {})

    def get(self, dimension: Dimension, issue_key: str) -> Optional[TrackingRecord]:
        return self.dimension(dimension).get(issue_key)

    def put(self, dimension: Dimension, issue_key: str, record: TrackingRecord) -> None:
        self.dimension(dimension)[issue_key] = record

    def remove(self, dimension: Dimension, issue_key: str) -> Optional[TrackingRecord]:
        return self.dimension(dimension).pop(issue_key, None)

    def contains(self, dimension: Dimension, issue_key: str) -> bool:
        return issue_key in self.dimension(dimension)

    def items(self) -> List[Tuple[Dimension, str, TrackingRecord]]:
        """Snapshot of every record, safe against mutation between awaits."""
        return [
            (dimension, issue_key, record)
            for dimension in DIMENSIONS
            for issue_key, record in list(self.dimension(dimension).items())
        ]

    def counts(self) -> Dict[str, int]:
        return {dimension.value: len(self.dimension(dimension)) for dimension in DIMENSIONS}

    def __len__(self) -> int:
        return sum(len(self.dimension(dimension)) for dimension in DIMENSIONS)
