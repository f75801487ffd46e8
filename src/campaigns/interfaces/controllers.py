"""
Campaign Controllers (API Routes)
==================================

Inbound edge for Jira webhooks and Slack slash commands.

Controllers are thin - they verify the caller and delegate to
application services.
"""

import secrets
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qs

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from slack_sdk.signature import SignatureVerifier

from campaigns.application import (
    JiraWebhookService,
    SlashCommandAck,
    SlashCommandService,
    WebhookResponse,
)
from campaigns.application.commands import section
from shared.infrastructure.logging import get_context_logger, get_logger

logger = get_logger(__name__)

jira_router = APIRouter(prefix="/jira", tags=["Jira"])
slack_router = APIRouter(prefix="/slack", tags=["Slack"])

Responder = Callable[[str, Dict[str, Any]], Awaitable[None]]


async def post_to_response_url(response_url: str, payload: Dict[str, Any]) -> None:
    """Deliver a delayed slash command reply."""
    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.post(response_url, json=payload)
        response.raise_for_status()


# ========== Dependencies ==========

async def get_webhook_service(request: Request) -> JiraWebhookService:
    service = getattr(request.app.state, "webhook_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Webhook service not initialized")
    return service


async def get_command_service(request: Request) -> SlashCommandService:
    service = getattr(request.app.state, "command_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Slash command service not initialized")
    return service


async def get_responder(request: Request) -> Responder:
    return getattr(request.app.state, "slack_responder", None) or post_to_response_url


async def verify_slack_request(request: Request) -> bytes:
    """Check the Slack signing signature; returns the raw body."""
    body = await request.body()
    signing_secret = request.app.state.settings.slack_signing_secret
    if not signing_secret:
        logger.warning("Slack signing secret not configured, rejecting slash command")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Slack signing secret not configured")

    verifier = SignatureVerifier(signing_secret)
    if not verifier.is_valid_request(body, dict(request.headers)):
        logger.warning("Invalid Slack signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Slack signature")
    return body


# ========== Jira ==========

@jira_router.post("/webhook", response_model=WebhookResponse, summary="Receive Jira issue events")
async def jira_webhook(
    request: Request,
    secret: Optional[str] = Query(default=None),
    service: JiraWebhookService = Depends(get_webhook_service)
):
    expected = request.app.state.settings.jira_webhook_secret
    if expected and not (secret and secrets.compare_digest(secret, expected)):
        logger.warning("Invalid Jira webhook secret received")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    commands = await service.process(payload)
    return WebhookResponse(commands=[type(command).__name__ for command in commands])


# ========== Slack ==========

async def _run_command(
    service: SlashCommandService,
    responder: Responder,
    command: str,
    text: str,
    user_name: str,
    response_url: str,
    correlation_id: Optional[str] = None
) -> None:
    log = get_context_logger(__name__, correlation_id)
    try:
        reply = await service.dispatch(command, text, user_name)
    except Exception:
        log.exception("Slash command failed", extra={"command": command})
        reply = section(f"Error running `{command}`. Please try again.", "Error running command")

    try:
        await responder(response_url, reply)
    except httpx.HTTPError as e:
        log.error("Failed to deliver slash command reply", extra={"command": command, "error": str(e)})


@slack_router.post("/commands", response_model=SlashCommandAck, summary="Slack slash commands")
async def slack_command(
    request: Request,
    background_tasks: BackgroundTasks,
    body: bytes = Depends(verify_slack_request),
    service: SlashCommandService = Depends(get_command_service),
    responder: Responder = Depends(get_responder)
):
    form = {key: values[0] for key, values in parse_qs(body.decode("utf-8")).items()}
    command = form.get("command", "")
    response_url = form.get("response_url")

    if command not in service.commands:
        return SlashCommandAck(text=f"Unknown command `{command}`.")
    if not response_url:
        raise HTTPException(status_code=400, detail="Missing response_url")

    background_tasks.add_task(
        _run_command,
        service,
        responder,
        command,
        form.get("text", ""),
        form.get("user_name", ""),
        response_url,
        getattr(request.state, "correlation_id", None),
    )
    return SlashCommandAck(text=f"Working on `{command} {form.get('text', '')}`...")
