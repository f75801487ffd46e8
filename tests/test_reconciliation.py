"""
Tests for rebuilding tracking state from Jira.

These tests verify:
1. Start times come from the latest matching changelog entry
2. Alert throttling survives only when the status is unchanged
3. Stale local entries are dropped
4. An unreachable Jira keeps the local snapshot
"""

from datetime import datetime, timedelta, timezone

from config import Dimension
from core import JiraException
from status_timer.domain import IssueSnapshot, StatusChanged, TrackingRecord, TrackingTable, format_timestamp

from conftest import PRIMARY_FIELD, history, make_issue


def ts(value: datetime) -> str:
    return format_timestamp(value)


# =============================================================================
# REBUILD
# =============================================================================


async def test_rebuild_from_changelog(reconciliation, manager, jira, clock, store):
    entered = clock.now - timedelta(minutes=10)
    jira.add(
        make_issue("AS-1", status="SUBMISSION REVIEW", assignee="Dana"),
        changelog=[
            history(ts(clock.now - timedelta(days=2)), "status", "PHASE 1"),
            history(ts(entered), "status", "SUBMISSION REVIEW"),
        ],
    )

    result = await reconciliation.reconcile_from_source()

    assert result.fallback is False
    assert result.tracked == {"primaryStatus": 0, "lifecycleStatus": 1}
    record = manager.table.get(Dimension.LIFECYCLE, "AS-1")
    assert record.start_time == entered
    assert record.last_alert_time is None
    assert store.load() == manager.table


async def test_latest_entry_wins_when_status_reentered(reconciliation, manager, jira, clock):
    first = clock.now - timedelta(days=3)
    second = clock.now - timedelta(hours=2)
    jira.add(
        make_issue("AS-1", status="PHASE 1", assignee="Dana"),
        changelog=[
            history(ts(first), "status", "PHASE 1"),
            history(ts(clock.now - timedelta(days=1)), "status", "PHASE 2"),
            history(ts(second), "status", "Phase 1"),
        ],
    )

    await reconciliation.reconcile_from_source()

    assert manager.table.get(Dimension.LIFECYCLE, "AS-1").start_time == second


async def test_primary_field_matched_by_field_id(reconciliation, manager, jira, clock):
    entered = clock.now - timedelta(hours=5)
    jira.add(
        make_issue("AS-1", primary="⚡ Let it Ride", status="PHASE COMPLETE"),
        changelog=[history(ts(entered), "Status", "⚡ Let it Ride", field_id=PRIMARY_FIELD)],
    )

    await reconciliation.reconcile_from_source()

    assert manager.table.get(Dimension.PRIMARY, "AS-1").start_time == entered
    assert not manager.table.contains(Dimension.LIFECYCLE, "AS-1")


async def test_missing_history_falls_back_to_created(reconciliation, manager, jira):
    jira.add(make_issue("AS-1", status="PHASE 2", assignee="Dana", created="2024-12-30T08:00:00.000+0000"))

    await reconciliation.reconcile_from_source()

    assert manager.table.get(Dimension.LIFECYCLE, "AS-1").start_time == datetime(
        2024, 12, 30, 8, 0, tzinfo=timezone.utc
    )


async def test_changelog_failure_falls_back_to_created(reconciliation, manager, jira):
    jira.add(make_issue("AS-1", status="PHASE 2", assignee="Dana", created="2024-12-30T08:00:00.000+0000"))
    jira.changelog_errors["AS-1"] = JiraException("rate limited", status_code=429)

    result = await reconciliation.reconcile_from_source()

    assert result.fallback is False
    assert manager.table.contains(Dimension.LIFECYCLE, "AS-1")


async def test_gated_issue_without_assignee_not_tracked(reconciliation, manager, jira):
    jira.add(make_issue("AS-1", status="NEW REQUEST"))

    await reconciliation.reconcile_from_source()

    assert len(manager.table) == 0


# =============================================================================
# SEED HANDLING
# =============================================================================


def seed_record(status: str, started: datetime, alerted: datetime) -> TrackingRecord:
    return TrackingRecord(
        status=status,
        start_time=started,
        last_alert_time=alerted,
        issue=IssueSnapshot(key="AS-1", summary="Spring", assignee="Dana"),
    )


async def test_same_status_keeps_last_alert(reconciliation, manager, jira, clock, store):
    alerted = clock.now - timedelta(minutes=30)
    seed = TrackingTable()
    seed.put(Dimension.LIFECYCLE, "AS-1", seed_record("phase 1", clock.now - timedelta(days=3), alerted))
    store.save(seed)
    jira.add(make_issue("AS-1", status="PHASE 1", assignee="Dana"))

    await reconciliation.reconcile_from_source()

    assert manager.table.get(Dimension.LIFECYCLE, "AS-1").last_alert_time == alerted


async def test_changed_status_resets_last_alert(reconciliation, manager, jira, clock, store):
    seed = TrackingTable()
    seed.put(Dimension.LIFECYCLE, "AS-1", seed_record(
        "PHASE 1", clock.now - timedelta(days=3), clock.now - timedelta(minutes=30)
    ))
    store.save(seed)
    jira.add(make_issue("AS-1", status="PHASE 2", assignee="Dana"))

    await reconciliation.reconcile_from_source()

    record = manager.table.get(Dimension.LIFECYCLE, "AS-1")
    assert record.status == "PHASE 2"
    assert record.last_alert_time is None


async def test_inactive_seed_entries_dropped(reconciliation, manager, jira, clock, store):
    seed = TrackingTable()
    seed.put(Dimension.PRIMARY, "AS-5", seed_record("✅ Roll Out", clock.now, clock.now))
    store.save(seed)

    result = await reconciliation.reconcile_from_source()

    assert result.dropped == 1
    assert len(manager.table) == 0
    assert len(store.load()) == 0


async def test_search_failure_keeps_local_snapshot(reconciliation, manager, jira, clock, store):
    seed = TrackingTable()
    seed.put(Dimension.LIFECYCLE, "AS-1", seed_record(
        "PHASE 1", clock.now - timedelta(days=1), clock.now - timedelta(hours=1)
    ))
    store.save(seed)
    jira.search_error = JiraException("connection refused")

    result = await reconciliation.reconcile_from_source()

    assert result.fallback is True
    assert manager.table == seed
    assert store.load() == seed


# =============================================================================
# LIVE MANAGER
# =============================================================================


async def test_webhook_during_rebuild_is_kept(reconciliation, manager, jira, clock, store):
    manager.load()
    manager.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1")
    jira.add(
        make_issue("AS-1", status="PHASE 1", assignee="Dana"),
        changelog=[history(ts(clock.now - timedelta(days=1)), "status", "PHASE 1")],
    )

    def move_to_phase_2(issue_key):
        manager.handle(StatusChanged(
            issue_key, Dimension.LIFECYCLE, "PHASE 1", "PHASE 2", IssueSnapshot(key=issue_key, assignee="Dana")
        ))

    jira.on_changelog = move_to_phase_2

    await reconciliation.reconcile_from_source()

    record = manager.table.get(Dimension.LIFECYCLE, "AS-1")
    assert record.status == "PHASE 2"
    assert record.start_time == clock.now
    assert store.load().get(Dimension.LIFECYCLE, "AS-1").status == "PHASE 2"


async def test_clear_during_rebuild_is_kept(reconciliation, manager, jira, clock):
    manager.load()
    manager.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1")
    jira.add(make_issue("AS-1", status="PHASE 1", assignee="Dana"))
    jira.on_changelog = lambda issue_key: manager.clear_issue(issue_key)

    await reconciliation.reconcile_from_source()

    assert not manager.table.contains(Dimension.LIFECYCLE, "AS-1")


async def test_unflushed_alert_survives_rebuild(reconciliation, manager, jira, clock, store):
    manager.load()
    record = manager.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1")
    alerted = clock.now - timedelta(minutes=5)
    manager.mark_alerted(Dimension.LIFECYCLE, "AS-1", record, alerted)
    assert store.load().get(Dimension.LIFECYCLE, "AS-1").last_alert_time is None
    jira.add(make_issue("AS-1", status="PHASE 1", assignee="Dana"))

    await reconciliation.reconcile_from_source()

    assert manager.table.get(Dimension.LIFECYCLE, "AS-1").last_alert_time == alerted
    assert store.load().get(Dimension.LIFECYCLE, "AS-1").last_alert_time == alerted


async def test_search_failure_keeps_live_table(reconciliation, manager, jira, store):
    manager.load()
    manager.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1")
    store.save(TrackingTable())
    jira.search_error = JiraException("connection refused")

    result = await reconciliation.reconcile_from_source()

    assert result.fallback is True
    assert manager.table.contains(Dimension.LIFECYCLE, "AS-1")
