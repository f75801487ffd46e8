"""
Slash Command Service
=====================

Handlers for the campaign slash commands.

Each handler returns a Slack message payload. Commands that move an
issue's status also restart the matching status timer, so the tracker
does not have to wait for Jira's webhook to catch up.
"""

from typing import Any, Dict, List, Optional, Tuple

from config import Dimension, PRIMARY_STATUS_ALIASES
from core import ApplicationException, ExternalServiceException
from shared.infrastructure.logging import get_logger
from status_timer.application import IChatClient, TrackingManager, minutes
from status_timer.domain import IssueSnapshot, StatusChanged

logger = get_logger(__name__)

SEARCH_LIMIT = 20


def section(text: str, fallback: Optional[str] = None) -> Dict[str, Any]:
    """Single-section in-channel reply."""
    return {
        "response_type": "in_channel",
        "text": fallback or text,
        "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
    }


def _split_args(text: str) -> Tuple[str, str]:
    parts = (text or "").strip().split(maxsplit=1)
    issue_key = parts[0].upper() if parts else ""
    rest = parts[1].strip() if len(parts) > 1 else ""
    return issue_key, rest


def _bullets(values: List[str]) -> str:
    return "\n".join(f"• `{value}`" for value in values)


def _error_text(error: ApplicationException) -> str:
    errors = error.details.get("errors") if error.details else None
    if errors:
        return "\n".join(f"{field}: {message}" for field, message in errors.items())
    return error.message


class SlashCommandService:
    """Implements /check-status, /status-update, /campaign-status-update and /search-issues."""

    def __init__(
        self,
        jira,
        manager: TrackingManager,
        primary_field: str,
        project_key: str,
        chat_client: Optional[IChatClient] = None,
        notification_channel: Optional[str] = None
    ):
        self._jira = jira
        self._manager = manager
        self._primary_field = primary_field
        self._project_key = project_key
        self._chat_client = chat_client
        self._notification_channel = notification_channel
        self._handlers = {
            "/check-status": self.check_status,
            "/status-update": self.update_primary_status,
            "/campaign-status-update": self.update_lifecycle_status,
            "/search-issues": self.search_issues,
        }

    @property
    def commands(self) -> List[str]:
        return list(self._handlers)

    async def dispatch(self, command: str, text: str, user_name: str) -> Dict[str, Any]:
        handler = self._handlers.get(command)
        if handler is None:
            return section(f"Unknown command `{command}`.")

        logger.info("Slash command received", extra={"command": command, "user": user_name})
        return await handler(text, user_name)

    # ========== /check-status ==========

    async def check_status(self, text: str, user_name: str = "") -> Dict[str, Any]:
        issue_key, _ = _split_args(text)
        if not issue_key:
            return section("Please provide an issue key: `/check-status AS-10`", "Please provide an issue key")

        try:
            issue = await self._jira.get_issue(issue_key, fields=["summary", "status", self._primary_field])
        except ApplicationException as e:
            return section(f"Error checking status: {_error_text(e)}. Please try again.", "Error checking status")

        fields = issue.get("fields") or {}
        primary = (fields.get(self._primary_field) or {}).get("value") or "Unknown"
        lifecycle = (fields.get("status") or {}).get("name") or "Unknown"

        lines = [
            f"*Status for {issue_key}*",
            f"*Campaign Name:* `{fields.get('summary')}`",
            f"*Campaign Status:* `{lifecycle}`",
            f"*Status:* `{primary}`",
        ]

        now = self._manager.now()
        table = self._manager.table
        for dimension, label in ((Dimension.LIFECYCLE, "Campaign Status"), (Dimension.PRIMARY, "Status")):
            record = table.get(dimension, issue_key)
            if record is not None:
                lines.append(f"*Time in {label}:* {minutes(record.elapsed(now))} minutes")

        return section("\n".join(lines), f"Status for {issue_key}")

    # ========== /status-update ==========

    async def update_primary_status(self, text: str, user_name: str = "") -> Dict[str, Any]:
        issue_key, requested = _split_args(text)
        options = list(PRIMARY_STATUS_ALIASES.values())

        if not issue_key or not requested:
            return section(
                "Please provide both issue key and status: `/status-update [issue-key] [status]`\n\n"
                f"*Available Statuses:*\n{_bullets(options)}",
                "Please provide both issue key and status"
            )

        requested = requested.lower()
        target = next(
            (value for alias, value in PRIMARY_STATUS_ALIASES.items() if alias in requested),
            None
        )
        if target is None:
            return section(f"Invalid status. Please use one of the following:\n{_bullets(options)}", "Invalid status provided")

        try:
            issue = await self._jira.get_issue(issue_key, fields=["summary", "assignee", self._primary_field])
            old_value = ((issue.get("fields") or {}).get(self._primary_field) or {}).get("value")

            field_options = await self._jira.get_field_options(self._primary_field)
            option = next((o for o in field_options if o.get("value") == target), None)
            if option is None:
                return section(
                    f"Error updating status:\n```Could not find matching option for status: {target}```",
                    "Error updating status"
                )

            await self._jira.update_fields(
                issue_key, {self._primary_field: {"id": option["id"], "value": option["value"]}}
            )
            updated = await self._jira.get_issue(issue_key, fields=["summary", "assignee", self._primary_field])
        except ApplicationException as e:
            logger.error("Status update failed", extra={"issue_key": issue_key, "error": e.message})
            return section(
                f"Error updating status:\n```{_error_text(e)}```\nPlease try again with a valid status.",
                "Error updating status"
            )

        new_value = ((updated.get("fields") or {}).get(self._primary_field) or {}).get("value") or target
        snapshot = IssueSnapshot.from_jira(updated)
        self._manager.handle(StatusChanged(issue_key, Dimension.PRIMARY, old_value, new_value, snapshot))

        await self._notify(issue_key, snapshot.summary, old_value, new_value, user_name)

        return section(
            f"*Status Update for {issue_key}*\n*Campaign Name:* `{snapshot.summary}`\n"
            f"*Status successfully updated to:* `{new_value}`",
            f"Status updated for {issue_key}"
        )

    # ========== /campaign-status-update ==========

    async def update_lifecycle_status(self, text: str, user_name: str = "") -> Dict[str, Any]:
        issue_key, requested = _split_args(text)

        try:
            statuses = await self._jira.get_project_statuses(self._project_key)
        except ApplicationException as e:
            return section(f"Error updating campaign status:\n```{_error_text(e)}```", "Error updating campaign status")

        names = [status["name"] for status in statuses]
        if not issue_key or not requested:
            return section(
                "Please provide both issue key and campaign status: "
                "`/campaign-status-update [issue-key] [status]`\n\n"
                f"*Available Campaign Statuses:*\n{_bullets(names)}",
                "Please provide both issue key and status"
            )

        target = next((s for s in statuses if s["name"].lower() == requested.lower()), None)
        if target is None:
            return section(f"Invalid status. Please use one of the following:\n{_bullets(names)}", "Invalid status provided")

        try:
            issue = await self._jira.get_issue(issue_key, fields=["summary", "assignee", "status"])
            old_value = ((issue.get("fields") or {}).get("status") or {}).get("name")

            transitions = await self._jira.get_transitions(issue_key)
            transition = next(
                (t for t in transitions if (t.get("to") or {}).get("id") == target["id"]),
                None
            )
            if transition is None:
                available = ", ".join(f"`{(t.get('to') or {}).get('name')}`" for t in transitions)
                return section(
                    f"Error updating campaign status:\n```Cannot transition to \"{target['name']}\" from the "
                    f"current status. Available transitions are: {available}```",
                    "Error updating campaign status"
                )

            await self._jira.transition_issue(issue_key, transition["id"])
            updated = await self._jira.get_issue(issue_key, fields=["summary", "assignee", "status"])
        except ApplicationException as e:
            logger.error("Campaign status update failed", extra={"issue_key": issue_key, "error": e.message})
            return section(
                f"Error updating campaign status:\n```{_error_text(e)}```\nPlease try again with a valid status.",
                "Error updating campaign status"
            )

        new_value = ((updated.get("fields") or {}).get("status") or {}).get("name") or target["name"]
        snapshot = IssueSnapshot.from_jira(updated)
        self._manager.handle(StatusChanged(issue_key, Dimension.LIFECYCLE, old_value, new_value, snapshot))

        return section(
            f"*Campaign Status Update for {issue_key}*\n*Campaign Name:* `{snapshot.summary}`\n"
            f"*Campaign Status successfully updated to:* `{new_value}`",
            f"Campaign Status updated for {issue_key}"
        )

    # ========== /search-issues ==========

    async def search_issues(self, text: str, user_name: str = "") -> Dict[str, Any]:
        project_key = (text or "").strip().upper()
        if not project_key:
            return section(f"Usage: `/search-issues {self._project_key}`", "Available Projects")

        try:
            issues = await self._jira.search_issues(
                f'project = "{project_key}" ORDER BY created DESC',
                fields=["summary"],
                max_results=SEARCH_LIMIT,
            )
        except ApplicationException as e:
            return section(f"Error fetching issues: {_error_text(e)}. Please try again.", "Error fetching issues")

        if not issues:
            return section(f"No issues found in project {project_key}.", "No issues found")

        listing = "\n".join(f"• *{issue['key']}*: {(issue.get('fields') or {}).get('summary')}" for issue in issues)
        return section(f"*Current Issues for {project_key}:*\n{listing}", f"Issues for {project_key}")

    async def _notify(
        self,
        issue_key: str,
        summary: Optional[str],
        old_value: Optional[str],
        new_value: str,
        user_name: str
    ) -> None:
        if self._chat_client is None or not self._notification_channel:
            return
        text = (
            f"*Status Update for {issue_key}*\n*Campaign Name:* `{summary}`\n"
            f"*Status changed from* `{old_value or 'Unknown'}` *to* `{new_value}`\n*Updated by:* {user_name}"
        )
        try:
            await self._chat_client.post_message(
                self._notification_channel,
                f"Status updated for {issue_key}",
                [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
            )
        except ExternalServiceException as e:
            logger.error("Failed to send status notification", extra={"issue_key": issue_key, "error": e.message})
