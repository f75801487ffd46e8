"""
Alert Messages
==============

Slack Block Kit payloads for status timer alerts.
"""

from datetime import timedelta
from typing import Any, Dict

from config import Dimension
from status_timer.domain import TrackingRecord


def minutes(delta: timedelta) -> int:
    """Whole minutes, rounded."""
    return round(delta.total_seconds() / 60)


def build_alert_message(
    dimension: Dimension,
    issue_key: str,
    record: TrackingRecord,
    elapsed: timedelta,
    threshold: timedelta,
    issue_url: str,
    gated: bool = False
) -> Dict[str, Any]:
    """
    Build the chat.postMessage payload for a threshold breach.

    Returns:
        dict with ``text`` (notification fallback) and ``blocks``
    """
    issue_field = {"type": "mrkdwn", "text": f"*Issue:*\n<{issue_url}|{issue_key}>"}
    elapsed_field = {"type": "mrkdwn", "text": f"*Time in Status:*\n{minutes(elapsed)} minutes"}

    if Dimension(dimension) == Dimension.PRIMARY:
        header = "⏰ Status Timer Alert"
        text = f"Status Timer Alert for {issue_key}"
        fields = [
            issue_field,
            {"type": "mrkdwn", "text": f"*Current Status:*\n{record.status}"},
            elapsed_field,
        ]
    else:
        header = "⏰ Assignee Action Required" if gated else "⏰ Campaign Status Timer Alert"
        text = f"Campaign Status Timer Alert for {issue_key}"
        if gated:
            detail = (
                f"*Alert:*\n{record.issue.assignee or 'Assignee'} has been on this task "
                f"for over {minutes(threshold)} minutes"
            )
        else:
            detail = f"*Current Campaign Status:*\n{record.status}"
        fields = [
            issue_field,
            {"type": "mrkdwn", "text": f"*Campaign:*\n{record.issue.summary or issue_key}"},
            {"type": "mrkdwn", "text": detail},
            elapsed_field,
        ]

    return {
        "text": text,
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": header, "emoji": True}
            },
            {"type": "section", "fields": fields},
        ],
    }
