"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class PersistenceException(ApplicationException):
    """Raised when the tracking document cannot be read or written."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class JiraException(ExternalServiceException):
    """Exception for Jira API failures."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.status_code = status_code
        super().__init__("Jira", message, details)


class IssueNotFoundException(JiraException):
    """The issue does not exist upstream (deleted or never created)."""

    def __init__(self, issue_key: str, details: Optional[dict] = None):
        self.issue_key = issue_key
        super().__init__(f"issue '{issue_key}' not found", status_code=404, details=details)


class ChatPlatformException(ExternalServiceException):
    """Exception for Slack API failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Slack", message, details)
