"""
Status Timer External Service Integrations
===========================================

External services for status timing:
- YAML threshold config with watchdog hot reload
- APScheduler for the periodic alert sweep
"""

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

import yaml
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from config import Dimension
from core import ConfigurationException, ValidationException
from shared.infrastructure.logging import get_logger
from status_timer.application.services import IThresholdConfigProvider
from status_timer.domain import ThresholdConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for threshold file changes."""

    def __init__(self, config_manager: "ThresholdConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if self._is_config(event.src_path):
            logger.info("Threshold file changed", extra={"path": event.src_path})
            self.config_manager.reload()

    on_created = on_modified

    def on_moved(self, event):
        # editors that save by renaming a temp file land here
        if event.is_directory:
            return
        if self._is_config(event.dest_path):
            logger.info("Threshold file replaced", extra={"path": event.dest_path})
            self.config_manager.reload()

    def _is_config(self, path) -> bool:
        return Path(path).resolve() == self.config_path.resolve()


class ThresholdConfigManager(IThresholdConfigProvider):
    """
    Thread-safe threshold configuration with hot-reload support.

    The watchdog observer runs on its own thread; readers on the event loop
    always see either the old or the new config object, never a mix.
    """

    def __init__(self):
        self._config: Optional[ThresholdConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> ThresholdConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        try:
            config = self._load_from_file(self._path)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid threshold config: {self._path}",
                details={"error": str(e)}
            ) from e
        with self._lock:
            self._config = config
        return config

    def _load_from_file(self, path: Path) -> ThresholdConfig:
        if not path.exists():
            logger.warning("Threshold config not found, using defaults", extra={"path": str(path)})
            return ThresholdConfig()

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError("threshold config root must be a mapping")
        return ThresholdConfig(**data)

    def reload(self) -> bool:
        """Reload from file; a broken edit keeps the previous config."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.error("Failed to reload threshold config", extra={"path": str(self._path), "error": str(e)})
            return False

        with self._lock:
            self._config = new_config
        logger.info("Threshold configuration reloaded")
        return True

    def update_threshold(self, dimension: Dimension, status: str, minutes: Optional[int]) -> ThresholdConfig:
        """
        Change one threshold at runtime.

        In memory only: the next edit of the YAML file replaces it.

        Raises:
            ValidationException: If minutes is not positive
        """
        if minutes is not None and minutes <= 0:
            raise ValidationException("minutes must be positive or None", details={"minutes": minutes})

        with self._lock:
            current = self._require_config()
            if Dimension(dimension) == Dimension.PRIMARY:
                mapping = dict(current.primary_status)
                mapping[status] = minutes
                updated = current.model_copy(update={"primary_status": mapping})
            else:
                mapping = dict(current.lifecycle_status)
                mapping[status.upper()] = minutes
                updated = current.model_copy(update={"lifecycle_status": mapping})
            self._config = updated

        logger.info(
            "Threshold updated",
            extra={"dimension": Dimension(dimension).value, "status": status, "minutes": minutes}
        )
        return updated

    def start_watching(self) -> None:
        """
        Start watching the threshold file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Threshold file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching threshold file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_config(self) -> ThresholdConfig:
        with self._lock:
            return self._require_config()

    @property
    def config(self) -> ThresholdConfig:
        return self.get_config()

    def _require_config(self) -> ThresholdConfig:
        if self._config is None:
            raise RuntimeError("Threshold configuration not loaded")
        return self._config


class StatusTimerScheduler:
    """
    Runs the alert sweep on an APScheduler interval job.

    One sweep at a time: a tick that arrives while the previous sweep is
    still awaiting Jira or Slack is dropped and logged, not queued.
    """

    JOB_ID = "status_timer_sweep"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None

    async def start(self, job_func: Callable[[], Awaitable[object]]) -> None:
        if self.is_running:
            logger.warning("Status timer scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(
            self._on_job_event,
            EVENT_JOB_ERROR | EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES
        )
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="Status Timer Alert Sweep",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        logger.info("Status timer scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Status timer scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def next_run_time(self) -> Optional[datetime]:
        if not self.is_running:
            return None
        job = self._scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None

    @staticmethod
    def _on_job_event(event) -> None:
        if event.code == EVENT_JOB_MAX_INSTANCES:
            logger.warning("Alert sweep still running, tick skipped")
        elif event.code == EVENT_JOB_MISSED:
            logger.warning("Alert sweep missed its run time", extra={"scheduled_run_time": str(event.scheduled_run_time)})
        else:
            logger.error("Alert sweep job raised", extra={"error": repr(event.exception)})
