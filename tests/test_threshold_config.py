"""
Tests for loading, reloading and updating threshold configuration.
"""

import pytest
from watchdog.events import FileModifiedEvent, FileMovedEvent

from config import Dimension
from core import ConfigurationException, ValidationException
from status_timer.infrastructure import ThresholdConfigManager
from status_timer.infrastructure.external import ConfigFileHandler


@pytest.fixture
def thresholds_file(tmp_path):
    path = tmp_path / "status_thresholds.yaml"
    path.write_text(
        "default_minutes: 7\n"
        "primary_status:\n"
        "  \"✅ Roll Out\": 120\n"
        "lifecycle_status:\n"
        "  phase 1: 60\n"
        "  Phase Complete: null\n",
        encoding="utf-8",
    )
    return path


def test_load_normalizes_lifecycle_keys(thresholds_file):
    manager = ThresholdConfigManager()

    config = manager.load(thresholds_file)

    assert config.default_minutes == 7
    assert config.lifecycle_status == {"PHASE 1": 60, "PHASE COMPLETE": None}
    assert config.primary_status == {"✅ Roll Out": 120}
    assert manager.get_config() is config


def test_missing_file_uses_defaults(tmp_path):
    manager = ThresholdConfigManager()

    config = manager.load(tmp_path / "absent.yaml")

    assert config.default_minutes == 5
    assert config.gated_status == "NEW REQUEST"


def test_invalid_file_raises(tmp_path):
    path = tmp_path / "status_thresholds.yaml"
    path.write_text("default_minutes: 0\n", encoding="utf-8")

    with pytest.raises(ConfigurationException):
        ThresholdConfigManager().load(path)


def test_reload_picks_up_edits(thresholds_file):
    manager = ThresholdConfigManager()
    manager.load(thresholds_file)
    thresholds_file.write_text("default_minutes: 9\n", encoding="utf-8")

    assert manager.reload() is True
    assert manager.get_config().default_minutes == 9


def test_broken_edit_keeps_previous_config(thresholds_file):
    manager = ThresholdConfigManager()
    before = manager.load(thresholds_file)
    thresholds_file.write_text("lifecycle_status: [unclosed\n", encoding="utf-8")

    assert manager.reload() is False
    assert manager.get_config() is before


def test_update_threshold_in_memory(thresholds_file):
    manager = ThresholdConfigManager()
    manager.load(thresholds_file)

    manager.update_threshold(Dimension.LIFECYCLE, "phase 2", 30)
    manager.update_threshold(Dimension.PRIMARY, "💀 Killed", None)

    config = manager.get_config()
    assert config.lifecycle_status["PHASE 2"] == 30
    assert config.primary_status["💀 Killed"] is None
    assert "PHASE 2" not in thresholds_file.read_text(encoding="utf-8")


def test_update_threshold_rejects_non_positive(thresholds_file):
    manager = ThresholdConfigManager()
    manager.load(thresholds_file)

    with pytest.raises(ValidationException):
        manager.update_threshold(Dimension.LIFECYCLE, "PHASE 1", 0)


class CountingReloads:
    def __init__(self):
        self.reloads = 0

    def reload(self) -> bool:
        self.reloads += 1
        return True


def test_rename_over_the_file_triggers_reload(thresholds_file):
    reloads = CountingReloads()
    handler = ConfigFileHandler(reloads, thresholds_file)
    temp = thresholds_file.parent / ".status_thresholds.yaml.swp"

    handler.on_moved(FileMovedEvent(str(temp), str(thresholds_file)))
    handler.on_moved(FileMovedEvent(str(thresholds_file), str(temp)))
    handler.on_modified(FileModifiedEvent(str(thresholds_file)))

    assert reloads.reloads == 2


def test_unrelated_rename_is_ignored(thresholds_file):
    reloads = CountingReloads()
    handler = ConfigFileHandler(reloads, thresholds_file)
    other = thresholds_file.parent / "other.yaml"

    handler.on_moved(FileMovedEvent(str(other) + ".tmp", str(other)))

    assert reloads.reloads == 0
