"""
Campaigns Module
================

Bounded Context for the Slack and Jira edge of the campaign bot.

Responsibilities:
- Receive Jira webhooks and feed status changes to the status timer
- Announce workflow status changes in Slack
- Serve the campaign slash commands
"""
