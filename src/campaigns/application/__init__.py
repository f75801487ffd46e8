"""
Campaigns Application Layer
============================

Contains:
- Webhooks: Jira payload translation into tracking commands
- Commands: slash command handlers
- DTOs: response models for the HTTP edge
"""

from campaigns.application.commands import SlashCommandService
from campaigns.application.dto import SlashCommandAck, WebhookResponse
from campaigns.application.webhooks import JiraWebhookService, translate_webhook

__all__ = [
    "SlashCommandService",
    "JiraWebhookService",
    "translate_webhook",
    "SlashCommandAck",
    "WebhookResponse",
]
