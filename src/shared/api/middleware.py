"""
Shared API Middleware
======================

Request tracing for the Slack and Jira facing routes.

Jira webhook deliveries carry X-Atlassian-Webhook-Identifier and Slack
redeliveries carry X-Slack-Retry-Num; both end up in the request log so a
duplicate delivery can be told apart from a second real event.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

JIRA_DELIVERY_HEADER = "X-Atlassian-Webhook-Identifier"
SLACK_RETRY_HEADERS = {"X-Slack-Retry-Num": "slack_retry_num", "X-Slack-Retry-Reason": "slack_retry_reason"}


def _request_context(request: Request) -> dict:
    context = {
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
        "method": request.method,
        "path": request.url.path,
    }
    for header, key in SLACK_RETRY_HEADERS.items():
        if header in request.headers:
            context[key] = request.headers[header]
    return context


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    A Jira delivery id is reused as the correlation id, so redeliveries of
    the same webhook share one; otherwise a fresh id is generated.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = (
            request.headers.get("X-Correlation-ID")
            or request.headers.get(JIRA_DELIVERY_HEADER)
            or str(uuid.uuid4())
        )
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request once it finishes.

    Query strings are left out of the log line because the Jira webhook
    carries its shared secret there.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        context = _request_context(request)

        try:
            response = await call_next(request)
        except Exception as e:
            context["response_time_ms"] = int((time.perf_counter() - start_time) * 1000)
            logger.error("Request failed", extra={**context, "error": str(e)})
            raise

        context["response_time_ms"] = int((time.perf_counter() - start_time) * 1000)
        logger.info("Request completed", extra={**context, "status_code": response.status_code})
        return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns a JSON 500 carrying the correlation id; the exception text is
    only included in development.
    """
    context = _request_context(request)
    logger.error(
        "Unhandled exception",
        extra={**context, "error_type": type(exc).__name__, "error_message": str(exc)}
    )

    settings = getattr(request.app.state, "settings", None)
    is_dev = getattr(settings, "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "correlation_id": context["correlation_id"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if is_dev else None
        }
    )
