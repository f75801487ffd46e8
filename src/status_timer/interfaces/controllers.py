"""
Status Timer Controllers (API Routes)
======================================

Operator endpoints for inspecting and steering the status timer.

Controllers are thin - they delegate to application services.
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from config import Dimension
from shared.infrastructure.logging import get_logger
from status_timer.application import (
    AlertScheduler,
    IChatClient,
    ReconciliationService,
    TrackingManager,
)
from status_timer.application.dto import (
    ClearResponse,
    ReconcileResponse,
    SweepResponse,
    ThresholdConfigResponse,
    ThresholdUpdateRequest,
    TrackingTableResponse,
    reconcile_response,
    sweep_response,
    tracking_table_response,
)

logger = get_logger(__name__)


# ========== Dependencies ==========

async def require_admin_token(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None)
) -> None:
    """The header must match the configured admin token; no token means no access."""
    expected = request.app.state.settings.admin_token
    if not expected:
        logger.warning("Admin token not configured, rejecting admin request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin token not configured")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


router = APIRouter(
    prefix="/status-timer",
    tags=["Status Timer"],
    dependencies=[Depends(require_admin_token)]
)


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return service


async def get_tracking_manager(request: Request) -> TrackingManager:
    return _state(request, "tracking_manager")


async def get_alert_scheduler(request: Request) -> AlertScheduler:
    return _state(request, "alert_scheduler")


async def get_reconciliation_service(request: Request) -> ReconciliationService:
    return _state(request, "reconciliation_service")


async def get_chat_client(request: Request) -> IChatClient:
    return _state(request, "chat_client")


async def get_threshold_config_manager(request: Request):
    return _state(request, "threshold_config")


# ========== Route Handlers ==========

@router.get("/tracking", response_model=TrackingTableResponse, summary="List tracked issues")
async def list_tracking(manager: TrackingManager = Depends(get_tracking_manager)):
    return tracking_table_response(manager.table, manager.policy, manager.now())


@router.delete(
    "/tracking/{dimension}/{issue_key}",
    response_model=ClearResponse,
    summary="Stop timing one dimension of an issue"
)
async def clear_tracking(
    dimension: Dimension,
    issue_key: str,
    manager: TrackingManager = Depends(get_tracking_manager)
):
    cleared = manager.clear_tracking(issue_key, dimension)
    if not cleared:
        raise HTTPException(status_code=404, detail=f"{issue_key} is not tracked for {dimension.value}")
    return ClearResponse(cleared=1)


@router.delete("/tracking", response_model=ClearResponse, summary="Discard every timer")
async def reset_tracking(
    confirm: bool = Query(default=False, description="Must be true"),
    manager: TrackingManager = Depends(get_tracking_manager)
):
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to discard all tracking")
    return ClearResponse(cleared=manager.reset_all())


@router.post("/sweep", response_model=SweepResponse, summary="Run an alert sweep now")
async def run_sweep(
    scheduler: AlertScheduler = Depends(get_alert_scheduler),
    chat_client: IChatClient = Depends(get_chat_client)
):
    return sweep_response(await scheduler.sweep(chat_client))


@router.post("/reconcile", response_model=ReconcileResponse, summary="Rebuild tracking from Jira")
async def reconcile(service: ReconciliationService = Depends(get_reconciliation_service)):
    return reconcile_response(await service.reconcile_from_source())


@router.get("/thresholds", response_model=ThresholdConfigResponse, summary="Current thresholds")
async def get_thresholds(config_manager=Depends(get_threshold_config_manager)):
    return ThresholdConfigResponse(**config_manager.get_config().model_dump())


@router.put(
    "/thresholds/{dimension}/{status_value}",
    response_model=ThresholdConfigResponse,
    summary="Change a threshold at runtime"
)
async def update_threshold(
    dimension: Dimension,
    status_value: str,
    payload: ThresholdUpdateRequest,
    config_manager=Depends(get_threshold_config_manager)
):
    updated = config_manager.update_threshold(dimension, status_value, payload.minutes)
    return ThresholdConfigResponse(**updated.model_dump())
