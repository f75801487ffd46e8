"""
Jira Webhook Translation
========================

Turns Jira webhook payloads into tracking commands and relays workflow
status changes to the notification channel.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config import Dimension
from core import ApplicationException
from shared.infrastructure.logging import get_logger
from status_timer.application import IChatClient, TrackingManager
from status_timer.domain import (
    AssigneeChanged,
    IssueDeleted,
    IssueSnapshot,
    StatusChanged,
    TrackingCommand,
    utc_now,
)

logger = get_logger(__name__)

ISSUE_CREATED = "jira:issue_created"
ISSUE_UPDATED = "jira:issue_updated"
ISSUE_DELETED = "jira:issue_deleted"


def _field_value(value: Any) -> Optional[str]:
    """Select fields arrive as {"value": ...}; workflow status as {"name": ...}."""
    if isinstance(value, dict):
        return value.get("value") or value.get("name")
    return value or None


def _is_status_item(item: Dict[str, Any]) -> bool:
    return item.get("fieldId") == "status" or item.get("field") == "status"


def translate_webhook(payload: Dict[str, Any], primary_field: str) -> List[TrackingCommand]:
    """
    Map one webhook delivery onto tracking commands.

    Events we do not time (comments, worklogs, unrelated field edits)
    translate to an empty list.
    """
    event = payload.get("webhookEvent")
    issue = payload.get("issue") or {}
    issue_key = issue.get("key")
    if not issue_key:
        return []

    if event == ISSUE_DELETED:
        return [IssueDeleted(issue_key=issue_key)]

    snapshot = IssueSnapshot.from_jira(issue)
    fields = issue.get("fields") or {}

    if event == ISSUE_CREATED:
        commands: List[TrackingCommand] = []
        primary = _field_value(fields.get(primary_field))
        if primary:
            commands.append(StatusChanged(issue_key, Dimension.PRIMARY, None, primary, snapshot))
        lifecycle = _field_value(fields.get("status"))
        if lifecycle:
            commands.append(StatusChanged(issue_key, Dimension.LIFECYCLE, None, lifecycle, snapshot))
        return commands

    if event != ISSUE_UPDATED:
        return []

    items = (payload.get("changelog") or {}).get("items") or []
    commands = []
    lifecycle_changed = False

    for item in items:
        if _is_status_item(item):
            lifecycle_changed = True
            commands.append(StatusChanged(
                issue_key, Dimension.LIFECYCLE, item.get("fromString"), item.get("toString"), snapshot
            ))
        elif item.get("fieldId") == primary_field:
            commands.append(StatusChanged(
                issue_key, Dimension.PRIMARY, item.get("fromString"), item.get("toString"), snapshot
            ))

    # A status move in the same delivery already restarts the lifecycle timer
    # with the post-change snapshot.
    if not lifecycle_changed:
        for item in items:
            if item.get("field") == "assignee" or item.get("fieldId") == "assignee":
                commands.append(AssigneeChanged(
                    issue_key=issue_key,
                    from_assignee=item.get("fromString"),
                    to_assignee=item.get("toString"),
                    lifecycle_status=_field_value(fields.get("status")),
                    issue=snapshot,
                ))
                break

    return commands


def build_status_update_message(
    issue_key: str,
    summary: Optional[str],
    old_status: Optional[str],
    new_status: Optional[str],
    updated_by: str,
    issue_url: str,
    updated_at: datetime
) -> Dict[str, Any]:
    return {
        "text": f"Status updated for {issue_key}",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "🔄 Jira Status Update", "emoji": True}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Issue:*\n<{issue_url}|{issue_key}>"},
                    {"type": "mrkdwn", "text": f"*Campaign:*\n{summary or issue_key}"},
                    {"type": "mrkdwn", "text": f"*Previous Status:*\n{old_status or 'Unknown'}"},
                    {"type": "mrkdwn", "text": f"*New Status:*\n{new_status or 'Unknown'}"},
                    {"type": "mrkdwn", "text": f"*Updated By:*\n{updated_by}"},
                    {"type": "mrkdwn", "text": f"*Updated At:*\n{updated_at.strftime('%Y-%m-%d %H:%M UTC')}"},
                ]
            },
        ],
    }


class JiraWebhookService:
    """Applies webhook deliveries to the tracking manager."""

    def __init__(
        self,
        manager: TrackingManager,
        chat_client: Optional[IChatClient],
        primary_field: str,
        notification_channel: Optional[str],
        issue_url: Callable[[str], str],
        clock: Callable[[], datetime] = utc_now
    ):
        self._manager = manager
        self._chat_client = chat_client
        self._primary_field = primary_field
        self._notification_channel = notification_channel
        self._issue_url = issue_url
        self._clock = clock

    async def process(self, payload: Dict[str, Any]) -> List[TrackingCommand]:
        commands = translate_webhook(payload, self._primary_field)

        logger.info(
            "Jira webhook received",
            extra={
                "event": payload.get("webhookEvent"),
                "issue_key": (payload.get("issue") or {}).get("key"),
                "commands": [type(command).__name__ for command in commands]
            }
        )

        for command in commands:
            self._manager.handle(command)

        updated_by = (payload.get("user") or {}).get("displayName") or "Unknown"
        if payload.get("webhookEvent") == ISSUE_UPDATED:
            for command in commands:
                if isinstance(command, StatusChanged) and command.dimension == Dimension.LIFECYCLE:
                    await self._notify(command, updated_by)

        return commands

    async def _notify(self, command: StatusChanged, updated_by: str) -> None:
        if self._chat_client is None or not self._notification_channel:
            return

        message = build_status_update_message(
            command.issue_key,
            command.issue.summary,
            command.from_value,
            command.to_value,
            updated_by,
            self._issue_url(command.issue_key),
            self._clock(),
        )
        try:
            await self._chat_client.post_message(self._notification_channel, message["text"], message["blocks"])
        except ApplicationException as e:
            logger.error(
                "Failed to send status update notification",
                extra={"issue_key": command.issue_key, "error": e.message}
            )
