"""
Reminders router for the reminder loop control plane.

Endpoints under /reminders/* for a manual tick, start, stop and status.
"""

from fastapi import APIRouter, HTTPException

from src.docket.errors import DocketError
from src.docket.timezones import to_iso, utc_now

from ..converters import dispatch_to_response
from ..errors import to_http_exception
from ..schemas.reminders import (
    ReminderStartRequest,
    ReminderStartResponse,
    ReminderStatusResponse,
    ReminderStopRequest,
    ReminderStopResponse,
    TickRequest,
    TickResponse,
)
from .._docket_state import get_docket_service


router = APIRouter()


@router.post("/tick", response_model=TickResponse)
def run_tick(request: TickRequest = TickRequest()):
    """
    Evaluate every case once.

    Safe to call while the loop runs: ticks never overlap and every reminder
    is claimed by CAS, so nothing is sent twice.
    """
    service = get_docket_service()
    now = request.now_utc or utc_now()

    try:
        records = service.tick(now)
    except DocketError as e:
        raise to_http_exception(e)

    return TickResponse(
        evaluated_at=to_iso(now),
        dispatched=[dispatch_to_response(r) for r in records],
        count=len(records),
    )


@router.post("/start", response_model=ReminderStartResponse)
def start_reminders(request: ReminderStartRequest = ReminderStartRequest()):
    """
    Start the reminder loop.

    Idempotent: If the loop is already running, returns success with message.
    """
    service = get_docket_service()

    if service.is_running:
        return ReminderStartResponse(
            success=True,
            message="Reminder loop is already running",
            recovery_stats=None,
        )

    try:
        recovery_stats = service.start(run_recovery=request.run_recovery, blocking=False)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to start reminder loop: {str(e)}"
        )

    return ReminderStartResponse(
        success=True,
        message="Reminder loop started successfully",
        recovery_stats=recovery_stats if recovery_stats else None,
    )


@router.post("/stop", response_model=ReminderStopResponse)
def stop_reminders(request: ReminderStopRequest = ReminderStopRequest()):
    """
    Stop the reminder loop gracefully.

    Idempotent: If the loop is already stopped, returns success.
    """
    service = get_docket_service()

    if not service.is_running:
        return ReminderStopResponse(
            success=True,
            message="Reminder loop is already stopped",
        )

    try:
        service.stop(timeout=request.timeout)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to stop reminder loop: {str(e)}"
        )

    return ReminderStopResponse(
        success=True,
        message="Reminder loop stopped successfully",
    )


@router.get("/status", response_model=ReminderStatusResponse)
def get_reminder_status():
    """Reminder loop state, tick counters and outbox counts."""
    service = get_docket_service()
    status = service.get_status()
    loop = status["reminders"]

    return ReminderStatusResponse(
        running=status["running"],
        state=loop["state"],
        tick_interval_seconds=loop["tick_interval_seconds"],
        max_workers=loop["max_workers"],
        war_room_lead_minutes=loop["war_room_lead_minutes"],
        ticks_completed=loop["ticks_completed"],
        ticks_skipped=loop["ticks_skipped"],
        last_tick_at=loop["last_tick_at"],
        last_dispatch_count=loop["last_dispatch_count"],
        notifications=status["notifications"],
        pending_requests=status["pending_requests"],
    )
