"""
Status Timer Infrastructure Layer
==================================

Infrastructure implementations for status timing:
- Repositories: JSON tracking store
- External: threshold config watcher, alert sweep scheduler
"""

from status_timer.infrastructure.repositories import JsonTrackingStore
from status_timer.infrastructure.external import (
    ThresholdConfigManager,
    StatusTimerScheduler,
)

__all__ = [
    "JsonTrackingStore",
    "ThresholdConfigManager",
    "StatusTimerScheduler",
]
