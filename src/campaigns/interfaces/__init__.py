"""
Campaigns Interfaces Layer
===========================

FastAPI routes for Jira webhooks and Slack slash commands.
"""

from campaigns.interfaces.controllers import jira_router, slack_router

__all__ = ["jira_router", "slack_router"]
