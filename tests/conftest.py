"""
Shared fixtures for the status timer test suite.

Upstream platforms are replaced by in-memory fakes and time by a fixed,
manually advanced clock.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from core import ChatPlatformException, IssueNotFoundException, JiraException
from status_timer.application import (
    AlertScheduler,
    IChatClient,
    IIssueTracker,
    ITrackingStore,
    ReconciliationService,
    TrackingManager,
)
from status_timer.domain import ThresholdConfig, ThresholdPolicy, TrackingTable
from status_timer.infrastructure import JsonTrackingStore

PRIMARY_FIELD = "customfield_10281"
START = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


# =============================================================================
# FAKES
# =============================================================================


class FixedClock:
    """Deterministic clock; call it like utc_now()."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_issue(
    key: str,
    summary: str = "Spring campaign",
    status: Optional[str] = None,
    primary: Optional[str] = None,
    assignee: Optional[str] = None,
    created: str = "2024-12-31T09:00:00.000+0000"
) -> dict:
    """Jira REST issue payload."""
    fields = {
        "summary": summary,
        "assignee": {"displayName": assignee, "accountId": f"id-{assignee}"} if assignee else None,
        "status": {"name": status, "id": f"s-{status}"} if status else None,
        "created": created,
        PRIMARY_FIELD: {"value": primary, "id": f"o-{primary}"} if primary else None,
    }
    return {"key": key, "fields": fields}


def history(created: str, field: str, to_string: str, field_id: Optional[str] = None) -> dict:
    """One changelog history entry with a single item."""
    return {
        "created": created,
        "items": [{"field": field, "fieldId": field_id or field, "toString": to_string}],
    }


class FakeIssueTracker(IIssueTracker):
    """In-memory Jira."""

    def __init__(self):
        self.issues: Dict[str, dict] = {}
        self.changelogs: Dict[str, List[dict]] = {}
        self.errors: Dict[str, Exception] = {}
        self.changelog_errors: Dict[str, Exception] = {}
        self.search_error: Optional[Exception] = None
        self.exists_calls: List[str] = []
        self.searches: List[str] = []
        # called while a changelog fetch is pending, to interleave other work
        self.on_changelog: Optional[Callable[[str], None]] = None

        # write side, used by the slash commands
        self.field_options: List[dict] = []
        self.project_statuses: List[dict] = []
        self.transitions: Dict[str, List[dict]] = {}
        self.updates: List[tuple] = []
        self.performed_transitions: List[tuple] = []

    def add(self, issue: dict, changelog: Optional[List[dict]] = None) -> None:
        self.issues[issue["key"]] = issue
        self.changelogs[issue["key"]] = changelog or []

    async def issue_exists(self, issue_key: str) -> bool:
        self.exists_calls.append(issue_key)
        if issue_key in self.errors:
            raise self.errors[issue_key]
        return issue_key in self.issues

    async def get_issue(self, issue_key: str, fields: Optional[Sequence[str]] = None) -> dict:
        if issue_key in self.errors:
            raise self.errors[issue_key]
        if issue_key not in self.issues:
            raise IssueNotFoundException(issue_key)
        return self.issues[issue_key]

    async def get_changelog(self, issue_key: str) -> List[dict]:
        if self.on_changelog:
            self.on_changelog(issue_key)
        if issue_key in self.changelog_errors:
            raise self.changelog_errors[issue_key]
        return list(self.changelogs.get(issue_key, []))

    async def search_issues(self, jql: str, fields: Sequence[str], max_results: Optional[int] = None) -> List[dict]:
        self.searches.append(jql)
        if self.search_error:
            raise self.search_error
        issues = list(self.issues.values())
        return issues[:max_results] if max_results else issues

    async def get_field_options(self, field_id: str) -> List[dict]:
        return self.field_options

    async def update_fields(self, issue_key: str, fields: dict) -> None:
        if issue_key not in self.issues:
            raise IssueNotFoundException(issue_key)
        self.updates.append((issue_key, fields))
        self.issues[issue_key]["fields"].update(fields)

    async def get_project_statuses(self, project_key: str) -> List[dict]:
        return self.project_statuses

    async def get_transitions(self, issue_key: str) -> List[dict]:
        if issue_key not in self.issues:
            raise IssueNotFoundException(issue_key)
        return self.transitions.get(issue_key, [])

    async def transition_issue(self, issue_key: str, transition_id: str) -> None:
        self.performed_transitions.append((issue_key, transition_id))
        for transition in self.transitions.get(issue_key, []):
            if transition["id"] == transition_id:
                self.issues[issue_key]["fields"]["status"] = dict(transition["to"])


class FakeChatClient(IChatClient):
    """Records every message; can be told to fail."""

    def __init__(self):
        self.messages: List[dict] = []
        self.joined: List[str] = []
        self.fail_posts = False
        self.fail_joins = False

    async def join_channel(self, channel_id: str) -> None:
        if self.fail_joins:
            raise ChatPlatformException("missing_scope")
        self.joined.append(channel_id)

    async def post_message(self, channel_id: str, text: str, blocks: List[dict]) -> None:
        if self.fail_posts:
            raise ChatPlatformException("rate_limited")
        self.messages.append({"channel": channel_id, "text": text, "blocks": blocks})


class RecordingStore(ITrackingStore):
    """Store double counting saves; set busy=True to simulate a held lock."""

    def __init__(self, table: Optional[TrackingTable] = None):
        self.table = table or TrackingTable()
        self.saves = 0
        self.busy = False

    def load(self) -> TrackingTable:
        return self.table

    def save(self, table: TrackingTable) -> bool:
        if self.busy:
            return False
        self.saves += 1
        self.table = table
        return True


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def threshold_config() -> ThresholdConfig:
    return ThresholdConfig()


@pytest.fixture
def policy(threshold_config) -> ThresholdPolicy:
    return ThresholdPolicy(lambda: threshold_config)


@pytest.fixture
def store(tmp_path) -> JsonTrackingStore:
    return JsonTrackingStore(tmp_path / "tracking.json", lock_timeout_seconds=0.2, fallback_dir=tmp_path / "fallback")


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def manager(store, policy, clock) -> TrackingManager:
    return TrackingManager(store, policy, clock=clock)


@pytest.fixture
def jira() -> FakeIssueTracker:
    return FakeIssueTracker()


@pytest.fixture
def chat() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def alert_scheduler(manager, jira, clock) -> AlertScheduler:
    return AlertScheduler(
        manager,
        jira,
        "C-ALERTS",
        lambda key: f"https://example.atlassian.net/browse/{key}",
        clock=clock
    )


@pytest.fixture
def reconciliation(manager, store, jira, clock) -> ReconciliationService:
    return ReconciliationService(
        manager,
        store,
        jira,
        PRIMARY_FIELD,
        'project = "AS" AND statusCategory != Done',
        clock=clock
    )


@pytest.fixture
def jira_down() -> JiraException:
    return JiraException("connection refused")
