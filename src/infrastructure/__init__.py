"""
Infrastructure Module
=====================

Clients for the upstream platforms:
- Jira Cloud REST API
- Slack Web API
"""
