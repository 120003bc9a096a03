"""Regime API endpoints for status, transition history and emergency controls."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from regime_switch.service import RegimeSwitchService
from regime_switch.transition import TransitionMetrics, TransitionRecord

# Singleton service instance, installed by the host application
_service: RegimeSwitchService | None = None


def get_service() -> RegimeSwitchService:
    """Get the installed RegimeSwitchService.

    Raises:
        HTTPException: 503 if no service is installed
    """
    if _service is None:
        raise HTTPException(status_code=503, detail="Regime service not initialized")
    return _service


def get_installed_service() -> RegimeSwitchService | None:
    return _service


def set_service(service: RegimeSwitchService | None) -> None:
    global _service
    _service = service


def reset_service() -> None:
    """Remove the installed service (for testing)."""
    set_service(None)


# Request/Response schemas
class StatusResponse(BaseModel):
    symbol: str
    current_regime: str | None
    last_signal: dict | None
    active_engine: str | None
    active_policy: str
    emergency_stop: bool
    manual_override: bool
    transition_running: bool
    pending_confirmation: str | None
    started_at: str | None


class ActiveTransitionResponse(BaseModel):
    id: str
    status: str
    action: str
    from_regime: str | None
    to_regime: str
    from_engine: str
    to_engine: str
    progress: float
    estimated_cost: float
    actual_cost: float
    started_at: datetime
    error: str | None


class ToggleRequest(BaseModel):
    """Request body for emergency stop and manual override."""

    active: bool
    reason: str = ""


class ToggleResponse(BaseModel):
    success: bool
    active: bool


class HealthResponse(BaseModel):
    status: str
    regime: str | None
    emergency_stop: bool
    transition_running: bool


# Router
router = APIRouter(prefix="/regime", tags=["regime"])


@router.get("/status", response_model=StatusResponse)
async def get_status() -> StatusResponse:
    """Current regime, last signal and control flags."""
    return StatusResponse(**get_service().status())


@router.get("/transitions/metrics", response_model=TransitionMetrics)
async def get_transition_metrics() -> TransitionMetrics:
    return get_service().manager.get_transition_metrics()


@router.get("/transitions/history", response_model=list[TransitionRecord])
async def get_transition_history(
    limit: int = Query(default=20, ge=1, le=1000),
) -> list[TransitionRecord]:
    """Most recent transition records, newest last."""
    return get_service().manager.get_transition_history(limit)


@router.get("/transitions/active", response_model=ActiveTransitionResponse | None)
async def get_active_transition() -> ActiveTransitionResponse | None:
    """The running transition, or null."""
    active = get_service().manager.get_active_transition()
    if active is None:
        return None
    return ActiveTransitionResponse(
        id=active.id,
        status=active.status.value,
        action=active.action.value,
        from_regime=active.from_regime.value if active.from_regime else None,
        to_regime=active.to_regime.value,
        from_engine=active.from_engine,
        to_engine=active.to_engine,
        progress=active.progress,
        estimated_cost=active.estimated_cost,
        actual_cost=active.actual_cost,
        started_at=active.started_at,
        error=active.error,
    )


@router.post("/emergency-stop", response_model=ToggleResponse)
async def emergency_stop(request: ToggleRequest) -> ToggleResponse:
    """Block all transitions (and cancel a running one) or lift the block.

    Activating requires a reason.
    """
    if request.active and not request.reason.strip():
        raise HTTPException(status_code=422, detail="reason is required to activate")
    service = get_service()
    service.set_emergency_stop(request.active, request.reason)
    return ToggleResponse(success=True, active=service.manager.is_emergency_stopped())


@router.post("/manual-override", response_model=ToggleResponse)
async def manual_override(request: ToggleRequest) -> ToggleResponse:
    service = get_service()
    service.set_manual_override(request.active, request.reason)
    return ToggleResponse(success=True, active=service.manager.is_manual_override())


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health probe; 503 while the emergency stop is active."""
    service = get_service()
    regime = service.detector.get_current_regime()
    stopped = service.manager.is_emergency_stopped()
    body = HealthResponse(
        status="emergency_stop" if stopped else "healthy",
        regime=regime.value if regime else None,
        emergency_stop=stopped,
        transition_running=service.transition_running,
    )
    if stopped:
        raise HTTPException(status_code=503, detail=body.model_dump())
    return body
