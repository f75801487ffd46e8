"""
Campaign Status Timer - Main Application
=========================================

Slack bot backend for the marketing team's Jira campaigns.

Modules:
- Status Timer: Track time in status and alert when an issue is stuck
- Campaigns: Jira webhooks and Slack slash commands

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: JSON store, Jira, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request

# Configuration
from config import settings

# Infrastructure
from infrastructure.jira import JiraClient
from infrastructure.slack import SlackChatClient

# Status Timer Module
from status_timer.application import AlertScheduler, ReconciliationService, TrackingManager
from status_timer.domain import ThresholdPolicy
from status_timer.infrastructure import (
    JsonTrackingStore,
    StatusTimerScheduler,
    ThresholdConfigManager,
)

# Campaigns Module
from campaigns.application import JiraWebhookService, SlashCommandService

# Module Routers
from status_timer.interfaces import status_timer_router
from campaigns.interfaces import jira_router, slack_router

# Logging
from shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Load threshold configuration and watch it
    3. Build tracking store, manager and upstream clients
    4. Reconcile tracking with Jira (or load the local snapshot)
    5. Start the alert sweep scheduler

    SHUTDOWN:
    1. Stop the scheduler
    2. Flush pending tracking changes
    3. Stop the config watcher and close clients
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Campaign Status Timer", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })
    if not settings.admin_token:
        logger.warning("ADMIN_TOKEN not set, /status-timer admin routes will reject every request")

    threshold_config = ThresholdConfigManager()
    threshold_config.load(settings.threshold_config_path)
    threshold_config.start_watching()
    policy = ThresholdPolicy(threshold_config.get_config)

    store = JsonTrackingStore(
        settings.tracking_file_path,
        lock_timeout_seconds=settings.tracking_lock_timeout_seconds
    )
    manager = TrackingManager(store, policy)

    jira_client = JiraClient()
    chat_client = SlackChatClient(settings.slack_bot_token)

    alert_scheduler = AlertScheduler(
        manager,
        jira_client,
        settings.timer_alerts_channel,
        settings.issue_url
    )
    reconciliation_service = ReconciliationService(
        manager,
        store,
        jira_client,
        settings.jira_status_field,
        settings.reconcile_jql.format(project=settings.jira_project_key)
    )

    if settings.reconcile_on_startup:
        await reconciliation_service.reconcile_from_source()
    else:
        manager.load()

    sweep_scheduler = None
    if settings.sweep_interval_seconds > 0:
        async def alert_sweep_job():
            """Background alert sweep."""
            await alert_scheduler.sweep(chat_client)

        sweep_scheduler = StatusTimerScheduler(interval_seconds=settings.sweep_interval_seconds)
        await sweep_scheduler.start(alert_sweep_job)
    else:
        logger.info("Alert sweep disabled")

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.threshold_config = threshold_config
    app.state.tracking_manager = manager
    app.state.alert_scheduler = alert_scheduler
    app.state.reconciliation_service = reconciliation_service
    app.state.sweep_scheduler = sweep_scheduler
    app.state.chat_client = chat_client
    app.state.webhook_service = JiraWebhookService(
        manager,
        chat_client,
        settings.jira_status_field,
        settings.slack_notification_channel,
        settings.issue_url
    )
    app.state.command_service = SlashCommandService(
        jira_client,
        manager,
        settings.jira_status_field,
        settings.jira_project_key,
        chat_client=chat_client,
        notification_channel=settings.slack_notification_channel
    )

    logger.info("Campaign Status Timer started successfully", extra={"tracked": manager.table.counts()})

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Campaign Status Timer")

    if sweep_scheduler:
        await sweep_scheduler.stop()

    if not manager.flush():
        logger.warning("Tracking changes could not be flushed on shutdown")

    threshold_config.stop_watching()
    await jira_client.close()

    logger.info("Campaign Status Timer shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Campaign Status Timer API",
    description="""
    ## Campaign Status Timer

    Tracks how long Jira campaign issues sit in each status and alerts
    Slack when a per-status threshold is exceeded.

    ---

    ### ⏰ Status Timer

    - `GET /status-timer/tracking` - Tracked issues with time in status
    - `POST /status-timer/sweep` - Run an alert sweep now
    - `POST /status-timer/reconcile` - Rebuild tracking from Jira
    - `GET /status-timer/thresholds` - Current thresholds

    ### 🔄 Campaigns

    - `POST /jira/webhook?secret=...` - Jira issue events
    - `POST /slack/commands` - `/check-status`, `/status-update`, `/campaign-status-update`, `/search-issues`
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === Custom Middleware (from shared) ===
from shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)

app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(status_timer_router)
app.include_router(jira_router)
app.include_router(slack_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports the tracking table size and scheduler state.
    """
    manager = getattr(request.app.state, "tracking_manager", None)
    sweep_scheduler = getattr(request.app.state, "sweep_scheduler", None)
    next_sweep = sweep_scheduler.next_run_time if sweep_scheduler else None

    checks = {
        "tracking": manager.table.counts() if manager else "not_loaded",
        "sweep_scheduler": "running" if sweep_scheduler and sweep_scheduler.is_running else "stopped",
        "next_sweep": next_sweep.isoformat() if next_sweep else None,
        "slack": "configured" if settings.slack_bot_token else "not_configured",
        "jira": "configured" if settings.jira_api_token else "not_configured",
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "status_timer": {
                "prefix": "/status-timer",
                "endpoints": [
                    "GET /status-timer/tracking - List tracked issues",
                    "DELETE /status-timer/tracking/{dimension}/{issue_key} - Stop a timer",
                    "DELETE /status-timer/tracking?confirm=true - Reset all timers",
                    "POST /status-timer/sweep - Run alert sweep",
                    "POST /status-timer/reconcile - Rebuild from Jira",
                    "GET /status-timer/thresholds - Current thresholds",
                    "PUT /status-timer/thresholds/{dimension}/{status} - Change a threshold"
                ]
            },
            "campaigns": {
                "endpoints": [
                    "POST /jira/webhook - Jira issue events",
                    "POST /slack/commands - Slack slash commands"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
