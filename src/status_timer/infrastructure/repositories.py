"""
Status Timer Repository Implementations
========================================

File-backed implementation of the tracking store interface.

The tracking table lives in a single JSON document. Saves go through a
temp file in the same directory and an atomic rename, guarded by an
advisory flock on a sibling ``.lock`` file.
"""

import fcntl
import json
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from config import Dimension, DIMENSIONS
from core import PersistenceException
from shared.infrastructure.logging import get_logger
from status_timer.application.services import ITrackingStore
from status_timer.domain import (
    IssueSnapshot,
    TrackingRecord,
    TrackingTable,
    format_timestamp,
    parse_timestamp,
)

logger = get_logger(__name__)

# Keys written by earlier releases of the bot
LEGACY_KEYS = {
    "status": Dimension.PRIMARY,
    "campaign": Dimension.LIFECYCLE,
}

LOCK_POLL_SECONDS = 0.05


class LockTimeout(PersistenceException):
    """Lock acquisition timed out."""


# ========== Serialization ==========

def record_to_dict(record: TrackingRecord) -> Dict[str, Any]:
    return {
        "status": record.status,
        "startTime": format_timestamp(record.start_time),
        "lastAlertTime": (
            format_timestamp(record.last_alert_time) if record.last_alert_time else None
        ),
        "issue": record.issue.to_dict(),
    }


def record_from_dict(issue_key: str, data: Dict[str, Any]) -> TrackingRecord:
    """
    Rebuild a record from its JSON form.

    Raises:
        ValueError: If the entry is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("record is not an object")

    status = data.get("status")
    if not isinstance(status, str) or not status:
        raise ValueError("record has no status")

    start_time = data.get("startTime")
    if not isinstance(start_time, str):
        raise ValueError("record has no startTime")

    last_alert = data.get("lastAlertTime")
    if last_alert is not None and not isinstance(last_alert, str):
        raise ValueError("lastAlertTime is not a timestamp")

    issue_data = data.get("issue") or {}
    if not isinstance(issue_data, dict):
        raise ValueError("issue is not an object")

    return TrackingRecord(
        status=status,
        start_time=parse_timestamp(start_time),
        last_alert_time=parse_timestamp(last_alert) if last_alert else None,
        issue=IssueSnapshot(
            key=issue_data.get("key") or issue_key,
            summary=issue_data.get("summary"),
            assignee=issue_data.get("assignee"),
        ),
    )


def table_to_dict(table: TrackingTable) -> Dict[str, Any]:
    return {
        dimension.value: {
            issue_key: record_to_dict(record)
            for issue_key, record in table.dimension(dimension).items()
        }
        for dimension in DIMENSIONS
    }


def table_from_dict(data: Dict[str, Any]) -> TrackingTable:
    """Rebuild a table, skipping malformed records."""
    table = TrackingTable()

    sections = {}
    for legacy_key, dimension in LEGACY_KEYS.items():
        if isinstance(data.get(legacy_key), dict):
            sections[dimension] = data[legacy_key]
    for dimension in DIMENSIONS:
        if isinstance(data.get(dimension.value), dict):
            sections[dimension] = data[dimension.value]

    for dimension, entries in sections.items():
        for issue_key, entry in entries.items():
            try:
                table.put(dimension, issue_key, record_from_dict(issue_key, entry))
            except ValueError as e:
                logger.warning(
                    "Skipping malformed tracking record",
                    extra={"issue_key": issue_key, "dimension": dimension.value, "error": str(e)}
                )

    return table


# ========== Store ==========

class JsonTrackingStore(ITrackingStore):
    """
    JSON document store for the tracking table.

    Never raises to callers: unreadable files load as an empty table, and
    a save that cannot reach the primary path falls back to a copy under
    the system temp directory.
    """

    def __init__(
        self,
        path: Path,
        lock_timeout_seconds: float = 2.0,
        fallback_dir: Optional[Path] = None
    ):
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock_timeout = lock_timeout_seconds
        fallback_root = Path(fallback_dir) if fallback_dir else Path(tempfile.gettempdir())
        self._fallback_path = fallback_root / f"status-timer-{self._path.name}"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def fallback_path(self) -> Path:
        return self._fallback_path

    def load(self) -> TrackingTable:
        source = self._path
        if not source.exists():
            if self._fallback_path.exists():
                logger.warning(
                    "Tracking file missing, loading fallback copy",
                    extra={"path": str(self._path), "fallback_path": str(self._fallback_path)}
                )
                source = self._fallback_path
            else:
                logger.info("Tracking file not found, starting empty", extra={"path": str(self._path)})
                table = TrackingTable()
                self.save(table)
                return table

        try:
            raw = source.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Could not read tracking file", extra={"path": str(source), "error": str(e)})
            return TrackingTable()

        if not raw.strip():
            logger.warning("Tracking file is empty", extra={"path": str(source)})
            return TrackingTable()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Tracking file is corrupt, starting empty", extra={"path": str(source), "error": str(e)})
            return TrackingTable()

        if not isinstance(data, dict):
            logger.warning("Tracking file root is not an object, starting empty", extra={"path": str(source)})
            return TrackingTable()

        table = table_from_dict(data)
        logger.info("Loaded tracking table", extra={"path": str(source), "counts": table.counts()})
        return table

    def save(self, table: TrackingTable) -> bool:
        payload = json.dumps(table_to_dict(table), indent=2, ensure_ascii=False)

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock():
                self._write_atomic(self._path, payload)
            return True
        except LockTimeout:
            logger.warning(
                "Tracking file locked by another writer, save deferred",
                extra={"path": str(self._path), "lock_timeout_seconds": self._lock_timeout}
            )
            return False
        except OSError as e:
            logger.error(
                "Failed to save tracking file, writing fallback copy",
                extra={"path": str(self._path), "fallback_path": str(self._fallback_path), "error": str(e)}
            )

        try:
            self._fallback_path.parent.mkdir(parents=True, exist_ok=True)
            self._write_atomic(self._fallback_path, payload)
            return True
        except OSError as e:
            logger.error(
                "Failed to save fallback tracking file",
                extra={"fallback_path": str(self._fallback_path), "error": str(e)}
            )
            return False

    @contextmanager
    def _lock(self) -> Iterator[None]:
        fd = open(self._lock_path, "w")
        try:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= self._lock_timeout:
                        raise LockTimeout(f"Could not lock {self._lock_path} within {self._lock_timeout}s")
                    time.sleep(LOCK_POLL_SECONDS)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            fd.close()

    @staticmethod
    def _write_atomic(target: Path, payload: str) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix=".tracking_", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise
