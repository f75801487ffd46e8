"""
Tests for the TrackingManager state machine.

These tests verify:
1. START persists a fresh record; disabled statuses are a no-op
2. CLEAR removes and persists; absent keys are a no-op
3. COMMANDS: status changes restart, assignee changes gate, deletes clear
4. FLUSH retries a save that found the lock busy
"""

from datetime import timedelta

import pytest

from config import Dimension
from status_timer.application import TrackingManager
from status_timer.domain import (
    AssigneeChanged,
    IssueDeleted,
    IssueSnapshot,
    StatusChanged,
)

from conftest import START

ASSIGNED = IssueSnapshot(key="AS-1", summary="Spring", assignee="Dana")
UNASSIGNED = IssueSnapshot(key="AS-1", summary="Spring")


@pytest.fixture
def counted(recording_store, policy, clock) -> TrackingManager:
    return TrackingManager(recording_store, policy, clock=clock)


# =============================================================================
# START / CLEAR
# =============================================================================


def test_start_tracking_records_and_persists(manager, store):
    record = manager.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)

    assert record.start_time == START
    assert record.last_alert_time is None
    assert store.load().get(Dimension.PRIMARY, "AS-1") == record


def test_restart_resets_clock(manager, clock):
    manager.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)
    clock.advance(hours=3)

    record = manager.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)

    assert record.start_time == START + timedelta(hours=3)


def test_disabled_status_is_noop(counted, recording_store):
    assert counted.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE COMPLETE", ASSIGNED) is None

    assert len(counted.table) == 0
    assert recording_store.saves == 0


def test_gated_status_without_assignee_is_noop(counted):
    assert counted.start_tracking("AS-1", Dimension.LIFECYCLE, "NEW REQUEST", UNASSIGNED) is None
    assert not counted.table.contains(Dimension.LIFECYCLE, "AS-1")


def test_gated_status_with_assignee_starts(counted):
    record = counted.start_tracking("AS-1", Dimension.LIFECYCLE, "NEW REQUEST", ASSIGNED)

    assert record is not None
    assert counted.table.get(Dimension.LIFECYCLE, "AS-1") is record


def test_clear_tracking(counted, recording_store):
    counted.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)

    assert counted.clear_tracking("AS-1", Dimension.PRIMARY) is True
    assert not counted.table.contains(Dimension.PRIMARY, "AS-1")
    assert recording_store.saves == 2


def test_clear_absent_key_is_noop(counted, recording_store):
    assert counted.clear_tracking("AS-404", Dimension.PRIMARY) is False
    assert recording_store.saves == 0


def test_dimensions_are_independent(counted):
    counted.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)
    counted.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)

    counted.clear_tracking("AS-1", Dimension.PRIMARY)

    assert counted.table.contains(Dimension.LIFECYCLE, "AS-1")


def test_reset_all(counted):
    counted.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)
    counted.start_tracking("AS-2", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)

    assert counted.reset_all() == 2
    assert len(counted.table) == 0


# =============================================================================
# COMMANDS
# =============================================================================


def test_status_changed_restarts_with_new_value(counted, clock, recording_store):
    counted.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)
    saves_before = recording_store.saves
    clock.advance(minutes=30)

    counted.handle(StatusChanged("AS-1", Dimension.LIFECYCLE, "PHASE 1", "PHASE 2", ASSIGNED))

    record = counted.table.get(Dimension.LIFECYCLE, "AS-1")
    assert record.status == "PHASE 2"
    assert record.start_time == clock.now
    assert recording_store.saves == saves_before + 1


def test_status_changed_into_disabled_status_clears(counted):
    counted.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 4", ASSIGNED)

    counted.handle(StatusChanged("AS-1", Dimension.LIFECYCLE, "PHASE 4", "PHASE COMPLETE", ASSIGNED))

    assert not counted.table.contains(Dimension.LIFECYCLE, "AS-1")


def test_assignee_added_in_gated_status_starts_timer(counted, clock):
    counted.handle(StatusChanged("AS-1", Dimension.LIFECYCLE, None, "NEW REQUEST", UNASSIGNED))
    assert not counted.table.contains(Dimension.LIFECYCLE, "AS-1")

    clock.advance(minutes=5)
    counted.handle(AssigneeChanged("AS-1", None, "Dana", "NEW REQUEST", ASSIGNED))

    record = counted.table.get(Dimension.LIFECYCLE, "AS-1")
    assert record.start_time == clock.now
    assert record.issue.assignee == "Dana"


def test_assignee_removed_in_gated_status_stops_timer(counted):
    counted.start_tracking("AS-1", Dimension.LIFECYCLE, "NEW REQUEST", ASSIGNED)

    counted.handle(AssigneeChanged("AS-1", "Dana", None, "NEW REQUEST", UNASSIGNED))

    assert not counted.table.contains(Dimension.LIFECYCLE, "AS-1")


def test_assignee_change_elsewhere_keeps_clock(counted, clock):
    counted.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)
    clock.advance(hours=1)
    reassigned = IssueSnapshot(key="AS-1", summary="Spring", assignee="Lee")

    counted.handle(AssigneeChanged("AS-1", "Dana", "Lee", "PHASE 1", reassigned))

    record = counted.table.get(Dimension.LIFECYCLE, "AS-1")
    assert record.start_time == START
    assert record.issue.assignee == "Lee"


def test_issue_deleted_clears_both_dimensions(counted):
    counted.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)
    counted.start_tracking("AS-1", Dimension.LIFECYCLE, "PHASE 1", ASSIGNED)

    counted.handle(IssueDeleted("AS-1"))

    assert len(counted.table) == 0


def test_unknown_command_rejected(counted):
    with pytest.raises(TypeError):
        counted.handle("not a command")


# =============================================================================
# PERSISTENCE
# =============================================================================


def test_busy_lock_defers_until_flush(counted, recording_store):
    recording_store.busy = True
    counted.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)
    assert recording_store.saves == 0

    recording_store.busy = False
    assert counted.flush() is True

    assert recording_store.saves == 1
    assert recording_store.table.contains(Dimension.PRIMARY, "AS-1")


def test_flush_without_changes_does_not_save(counted, recording_store):
    assert counted.flush() is True
    assert recording_store.saves == 0


def test_mark_alerted_ignores_replaced_record(counted, clock):
    stale = counted.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)
    counted.start_tracking("AS-1", Dimension.PRIMARY, "💀 Killed", ASSIGNED)

    assert counted.mark_alerted(Dimension.PRIMARY, "AS-1", stale, clock.now) is False
    assert counted.table.get(Dimension.PRIMARY, "AS-1").last_alert_time is None


def test_load_adopts_store_contents(store, policy, clock):
    first = TrackingManager(store, policy, clock=clock)
    first.start_tracking("AS-1", Dimension.PRIMARY, "✅ Roll Out", ASSIGNED)

    second = TrackingManager(store, policy, clock=clock)
    second.load()

    assert second.table == first.table
