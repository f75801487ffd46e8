"""
Status Timer Application Services
==================================

Application services orchestrate the tracking state machine and coordinate
between the domain, the tracking store and the upstream platforms.

Following SOLID principles:
- Single Responsibility: manager mutates, scheduler alerts, reconciler rebuilds
- Dependency Inversion: depend on port interfaces, not on httpx/slack_sdk
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from config import Dimension, DIMENSIONS
from core import IssueNotFoundException
from shared.infrastructure.logging import get_logger, log_latency
from status_timer.application.alerts import build_alert_message, minutes
from status_timer.domain import (
    AssigneeChanged,
    IssueDeleted,
    IssueSnapshot,
    StatusChanged,
    ThresholdConfig,
    ThresholdPolicy,
    TrackingCommand,
    TrackingRecord,
    TrackingTable,
    parse_timestamp,
    utc_now,
)

logger = get_logger(__name__)


# ========== Port Interfaces (Dependency Inversion) ==========

class ITrackingStore(ABC):
    """Durable home of the tracking table."""

    @abstractmethod
    def load(self) -> TrackingTable:
        """Read the persisted table; never raises."""

    @abstractmethod
    def save(self, table: TrackingTable) -> bool:
        """Persist the table; returns False when the save was skipped."""


class IIssueTracker(ABC):
    """Read-only view of Jira used by the status timer."""

    @abstractmethod
    async def issue_exists(self, issue_key: str) -> bool:
        """False only on a definitive not-found; other failures raise."""

    @abstractmethod
    async def get_issue(self, issue_key: str, fields: Optional[Sequence[str]] = None) -> dict:
        """Fetch an issue; raises IssueNotFoundException on 404."""

    @abstractmethod
    async def get_changelog(self, issue_key: str) -> List[dict]:
        """All history entries of an issue, oldest first."""

    @abstractmethod
    async def search_issues(self, jql: str, fields: Sequence[str]) -> List[dict]:
        """Every issue matching a JQL query."""


class IChatClient(ABC):
    """Outbound chat platform operations."""

    @abstractmethod
    async def join_channel(self, channel_id: str) -> None:
        """Join a channel; joining one twice is not an error."""

    @abstractmethod
    async def post_message(self, channel_id: str, text: str, blocks: List[dict]) -> None:
        """Post a Block Kit message."""


class IThresholdConfigProvider(ABC):
    """Interface for threshold configuration access."""

    @abstractmethod
    def get_config(self) -> ThresholdConfig:
        """Get current threshold configuration."""


# ========== Results ==========

@dataclass
class SweepResult:
    checked: int = 0
    alerts_sent: int = 0
    cleared: int = 0
    errors: int = 0


@dataclass
class ReconcileResult:
    issues_seen: int = 0
    tracked: Dict[str, int] = field(default_factory=dict)
    dropped: int = 0
    fallback: bool = False


# ========== Tracking Manager ==========

class TrackingManager:
    """
    Owns the tracking table and every mutation of it.

    Each public mutation persists before returning. Mutations are plain
    synchronous methods, so under asyncio one always completes before any
    other coroutine observes the table.
    """

    def __init__(
        self,
        store: ITrackingStore,
        policy: ThresholdPolicy,
        table: Optional[TrackingTable] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self._store = store
        self._policy = policy
        self._table = table if table is not None else TrackingTable()
        self._clock = clock
        self._dirty = False
        self._loaded = table is not None

    @property
    def table(self) -> TrackingTable:
        return self._table

    @property
    def policy(self) -> ThresholdPolicy:
        return self._policy

    def now(self) -> datetime:
        return self._clock()

    @property
    def loaded(self) -> bool:
        """True once the table came from the store or a reconciliation."""
        return self._loaded

    def load(self) -> TrackingTable:
        """Adopt whatever the store holds, without consulting Jira."""
        self._table = self._store.load()
        self._dirty = False
        self._loaded = True
        return self._table

    def start_tracking(
        self,
        issue_key: str,
        dimension: Dimension,
        status_value: str,
        issue: Optional[IssueSnapshot] = None
    ) -> Optional[TrackingRecord]:
        """
        Start (or restart) the timer for an issue's status.

        Overwriting an existing record resets its clock. Disabled statuses
        are a logged no-op.

        Returns:
            The new record, or None when tracking is disabled
        """
        record = self._start(issue_key, dimension, status_value, issue)
        if record is not None:
            self._persist()
        return record

    def clear_tracking(self, issue_key: str, dimension: Dimension) -> bool:
        """Stop timing one dimension of an issue; absent keys are a no-op."""
        removed = self._clear(issue_key, dimension)
        if removed:
            self._persist()
        return removed

    def clear_issue(self, issue_key: str, persist: bool = True) -> bool:
        """
        Stop timing both dimensions, e.g. after the issue was deleted upstream.

        With persist=False the change is left for the next flush().
        """
        removed = False
        for dimension in DIMENSIONS:
            removed = self._clear(issue_key, dimension) or removed
        if removed:
            if persist:
                self._persist()
            else:
                self._dirty = True
        return removed

    def reset_all(self) -> int:
        """
        Discard every timer.

        Only for deliberate operator resets; never called on a normal path.
        """
        count = len(self._table)
        self._table = TrackingTable()
        logger.warning("Cleared all status tracking", extra={"records_discarded": count})
        self._persist()
        return count

    def handle(self, command: TrackingCommand) -> None:
        """Apply an inbound tracking command and persist once."""
        changed = False

        if isinstance(command, StatusChanged):
            changed = self._clear(command.issue_key, command.dimension)
            if command.to_value:
                changed = self._start(
                    command.issue_key, command.dimension, command.to_value, command.issue
                ) is not None or changed

        elif isinstance(command, AssigneeChanged):
            status = command.lifecycle_status
            if status and self._policy.is_gated(Dimension.LIFECYCLE, status):
                changed = self._clear(command.issue_key, Dimension.LIFECYCLE)
                changed = self._start(
                    command.issue_key, Dimension.LIFECYCLE, status, command.issue
                ) is not None or changed
            else:
                changed = self._refresh_snapshot(command.issue)

        elif isinstance(command, IssueDeleted):
            for dimension in DIMENSIONS:
                changed = self._clear(command.issue_key, dimension) or changed

        else:
            raise TypeError(f"Unsupported tracking command: {type(command).__name__}")

        if changed:
            self._persist()

    def mark_alerted(
        self,
        dimension: Dimension,
        issue_key: str,
        record: TrackingRecord,
        when: datetime
    ) -> bool:
        """
        Record an alert against the record that triggered it.

        A record cleared or restarted while the alert was in flight is left
        alone. Persisted by the next flush().
        """
        if self._table.get(dimension, issue_key) is not record:
            return False
        record.mark_alerted(when)
        self._dirty = True
        return True

    def replace_table(self, table: TrackingTable, persist: bool = True) -> None:
        self._table = table
        self._loaded = True
        if persist:
            self._persist()
        else:
            self._dirty = False

    def flush(self) -> bool:
        """Persist pending changes, including saves that were skipped earlier."""
        if not self._dirty:
            return True
        return self._persist()

    # ---------- internals ----------

    def _start(
        self,
        issue_key: str,
        dimension: Dimension,
        status_value: str,
        issue: Optional[IssueSnapshot]
    ) -> Optional[TrackingRecord]:
        snapshot = issue or IssueSnapshot(key=issue_key)
        threshold = self._policy.resolve_threshold(dimension, status_value, snapshot)
        if threshold is None:
            logger.info(
                "Tracking disabled for status",
                extra={"issue_key": issue_key, "dimension": Dimension(dimension).value, "status": status_value}
            )
            return None

        record = TrackingRecord(status=status_value, start_time=self._clock(), issue=snapshot)
        self._table.put(dimension, issue_key, record)
        logger.info(
            "Started tracking",
            extra={
                "issue_key": issue_key,
                "dimension": Dimension(dimension).value,
                "status": status_value,
                "threshold_minutes": minutes(threshold)
            }
        )
        return record

    def _clear(self, issue_key: str, dimension: Dimension) -> bool:
        if self._table.remove(dimension, issue_key) is None:
            return False
        logger.info(
            "Cleared tracking",
            extra={"issue_key": issue_key, "dimension": Dimension(dimension).value}
        )
        return True

    def _refresh_snapshot(self, issue: IssueSnapshot) -> bool:
        changed = False
        for dimension in DIMENSIONS:
            record = self._table.get(dimension, issue.key)
            if record is not None and record.issue != issue:
                record.issue = issue
                changed = True
        return changed

    def _persist(self) -> bool:
        saved = self._store.save(self._table)
        self._dirty = not saved
        return saved


# ========== Alert Scheduler ==========

class AlertScheduler:
    """
    Periodic sweep over every tracked issue.

    Safe to re-invoke every interval indefinitely: per-issue failures are
    logged and counted, and sweep() itself never raises.
    """

    def __init__(
        self,
        manager: TrackingManager,
        issue_tracker: IIssueTracker,
        alert_channel: str,
        issue_url: Callable[[str], str],
        clock: Callable[[], datetime] = utc_now
    ):
        self._manager = manager
        self._issue_tracker = issue_tracker
        self._alert_channel = alert_channel
        self._issue_url = issue_url
        self._clock = clock

    async def sweep(self, chat_client: IChatClient) -> SweepResult:
        result = SweepResult()
        try:
            with log_latency(logger, "alert_sweep"):
                await self._sweep(chat_client, result)
        except Exception:
            logger.exception("Alert sweep failed")
            result.errors += 1

        logger.info(
            "Alert sweep finished",
            extra={
                "checked": result.checked,
                "alerts_sent": result.alerts_sent,
                "cleared": result.cleared,
                "errors": result.errors
            }
        )
        return result

    async def _sweep(self, chat_client: IChatClient, result: SweepResult) -> None:
        now = self._clock()
        table = self._manager.table
        policy = self._manager.policy
        existence: Dict[str, bool] = {}
        channel_ready = False

        for dimension, issue_key, record in table.items():
            # Skip records cleared or restarted since the snapshot was taken
            if self._manager.table.get(dimension, issue_key) is not record:
                continue
            result.checked += 1

            try:
                if issue_key not in existence:
                    existence[issue_key] = await self._issue_tracker.issue_exists(issue_key)
                if not existence[issue_key]:
                    logger.info("Issue no longer exists, clearing tracking", extra={"issue_key": issue_key})
                    self._manager.clear_issue(issue_key, persist=False)
                    result.cleared += 1
                    continue

                threshold = policy.resolve_threshold(dimension, record.status, record.issue)
                if threshold is None:
                    continue
                if not record.is_alert_due(now, threshold):
                    continue

                elapsed = record.elapsed(now)
                logger.warning(
                    "Status threshold exceeded",
                    extra={
                        "issue_key": issue_key,
                        "dimension": dimension.value,
                        "status": record.status,
                        "elapsed_minutes": minutes(elapsed)
                    }
                )

                if not channel_ready:
                    await self._ensure_channel_access(chat_client)
                    channel_ready = True

                message = build_alert_message(
                    dimension,
                    issue_key,
                    record,
                    elapsed,
                    threshold,
                    self._issue_url(issue_key),
                    gated=policy.is_gated(dimension, record.status),
                )
                await chat_client.post_message(self._alert_channel, message["text"], message["blocks"])

                if self._manager.mark_alerted(dimension, issue_key, record, now):
                    result.alerts_sent += 1

            except Exception as e:
                result.errors += 1
                logger.error(
                    "Failed to check tracked issue",
                    extra={"issue_key": issue_key, "dimension": dimension.value, "error": str(e)}
                )

        self._manager.flush()

    async def _ensure_channel_access(self, chat_client: IChatClient) -> None:
        try:
            await chat_client.join_channel(self._alert_channel)
        except Exception as e:
            logger.warning(
                "Could not join alert channel",
                extra={"channel": self._alert_channel, "error": str(e)}
            )


# ========== Reconciliation ==========

class ReconciliationService:
    """
    Rebuilds the tracking table from Jira.

    The locally persisted table is only a provisional seed: it supplies
    alert throttling state, and is used as-is when Jira is unreachable.
    """

    def __init__(
        self,
        manager: TrackingManager,
        store: ITrackingStore,
        issue_tracker: IIssueTracker,
        primary_field: str,
        jql: str,
        clock: Callable[[], datetime] = utc_now
    ):
        self._manager = manager
        self._store = store
        self._issue_tracker = issue_tracker
        self._primary_field = primary_field
        self._jql = jql
        self._clock = clock

    async def reconcile_from_source(self) -> ReconcileResult:
        """
        Rebuild the table from Jira's current state.

        A live manager is its own seed; the store is only read before the
        first load. Records started, cleared or restarted while Jira was
        being queried win over the rebuilt ones.
        """
        live = self._manager.loaded
        seed = self._manager.table if live else self._store.load()
        baseline = {(dimension, key): record for dimension, key, record in self._manager.table.items()}

        try:
            issues = await self._issue_tracker.search_issues(
                self._jql,
                fields=["summary", "assignee", "status", "created", self._primary_field],
            )
        except Exception as e:
            logger.warning(
                "Jira search failed, keeping local tracking snapshot",
                extra={"error": str(e), "records": len(seed)}
            )
            if not live:
                self._manager.replace_table(seed, persist=False)
            return ReconcileResult(tracked=self._manager.table.counts(), fallback=True)

        policy = self._manager.policy
        rebuilt: List[Tuple[Dimension, str, str, datetime, IssueSnapshot]] = []

        for issue in issues:
            snapshot = IssueSnapshot.from_jira(issue)
            current = self._current_values(issue)
            active = {
                dimension: value
                for dimension, value in current.items()
                if value and policy.resolve_threshold(dimension, value, snapshot) is not None
            }
            if not active:
                continue

            history = await self._history(snapshot.key)
            created = self._parse(issue.get("fields", {}).get("created"))

            for dimension, value in active.items():
                entered = self._entered_at(dimension, value, history) or created or self._clock()
                rebuilt.append((dimension, snapshot.key, value, entered, snapshot))

        # No awaits from here on: the table cannot change underneath us.
        table = TrackingTable()
        for dimension, issue_key, value, entered, snapshot in rebuilt:
            prior = seed.get(dimension, issue_key)
            last_alert = None
            if prior is not None and self._same_status(dimension, prior.status, value):
                last_alert = prior.last_alert_time
            table.put(
                dimension,
                issue_key,
                TrackingRecord(status=value, start_time=entered, issue=snapshot, last_alert_time=last_alert),
            )

        kept = self._keep_concurrent_changes(table, baseline)
        dropped = sum(
            1 for dimension, issue_key, _ in seed.items() if not table.contains(dimension, issue_key)
        )
        self._manager.replace_table(table)

        result = ReconcileResult(issues_seen=len(issues), tracked=table.counts(), dropped=dropped)
        logger.info(
            "Reconciled tracking from Jira",
            extra={
                "issues_seen": result.issues_seen,
                "tracked": result.tracked,
                "dropped": dropped,
                "kept_concurrent": kept
            }
        )
        return result

    def _keep_concurrent_changes(
        self,
        table: TrackingTable,
        baseline: Dict[Tuple[Dimension, str], TrackingRecord]
    ) -> int:
        """Carry over manager mutations made while the rebuild was awaiting Jira."""
        current = {(dimension, key): record for dimension, key, record in self._manager.table.items()}
        kept = 0
        for dimension, issue_key in set(baseline) | set(current):
            record = current.get((dimension, issue_key))
            if record is baseline.get((dimension, issue_key)):
                continue
            if record is None:
                table.remove(dimension, issue_key)
            else:
                table.put(dimension, issue_key, record)
            kept += 1
        return kept

    def _current_values(self, issue: dict) -> Dict[Dimension, Optional[str]]:
        fields = issue.get("fields") or {}
        primary = fields.get(self._primary_field)
        if isinstance(primary, dict):
            primary = primary.get("value")
        lifecycle = (fields.get("status") or {}).get("name")
        return {Dimension.PRIMARY: primary, Dimension.LIFECYCLE: lifecycle}

    async def _history(self, issue_key: str) -> List[dict]:
        try:
            return await self._issue_tracker.get_changelog(issue_key)
        except Exception as e:
            logger.warning(
                "Changelog unavailable, falling back to creation time",
                extra={"issue_key": issue_key, "error": str(e)}
            )
            return []

    def _entered_at(self, dimension: Dimension, value: str, history: List[dict]) -> Optional[datetime]:
        """Most recent time the field was set to its current value."""
        latest: Optional[datetime] = None
        for entry in history:
            for item in entry.get("items", []):
                if not self._is_field(dimension, item):
                    continue
                if not self._same_status(dimension, item.get("toString") or "", value):
                    continue
                when = self._parse(entry.get("created"))
                if when is not None and (latest is None or when > latest):
                    latest = when
        return latest

    def _is_field(self, dimension: Dimension, item: dict) -> bool:
        if dimension == Dimension.LIFECYCLE:
            return item.get("fieldId") == "status" or item.get("field") == "status"
        return self._primary_field in (item.get("fieldId"), item.get("field"))

    @staticmethod
    def _same_status(dimension: Dimension, a: str, b: str) -> bool:
        if dimension == Dimension.LIFECYCLE:
            return a.upper() == b.upper()
        return a == b

    @staticmethod
    def _parse(value: Any) -> Optional[datetime]:
        if not value:
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            return None
