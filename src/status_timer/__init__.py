"""
Status Timer Module
===================

Bounded Context for status-duration tracking and alerting.

Responsibilities:
- Decide per-status thresholds, including the assignee-gated status
- Start and clear timers as issues move between statuses
- Persist the tracking table to a crash-safe JSON document
- Sweep tracked issues periodically and alert Slack when one is stuck
- Rebuild tracking state from Jira on startup and on demand
"""

__version__ = "1.0.0"
