"""
Status Timer Application Layer
===============================

Application layer for the status timer module.

Contains:
- Services: TrackingManager, AlertScheduler, ReconciliationService
- Ports: interfaces for the store, Jira and Slack
- Alerts: Block Kit message builder
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and port interfaces,
but not on concrete infrastructure implementations.
"""

from status_timer.application.alerts import build_alert_message, minutes
from status_timer.application.services import (
    AlertScheduler,
    IChatClient,
    IIssueTracker,
    IThresholdConfigProvider,
    ITrackingStore,
    ReconcileResult,
    ReconciliationService,
    SweepResult,
    TrackingManager,
)

__all__ = [
    # Alerts
    "build_alert_message",
    "minutes",
    # Services
    "TrackingManager",
    "AlertScheduler",
    "ReconciliationService",
    "SweepResult",
    "ReconcileResult",
    # Port Interfaces
    "ITrackingStore",
    "IIssueTracker",
    "IChatClient",
    "IThresholdConfigProvider",
]
