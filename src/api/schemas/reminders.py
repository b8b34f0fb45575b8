"""
Reminder loop API schemas.

Supports /reminders/* control plane endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class TickRequest(BaseModel):
    """Request a single evaluation of every case."""

    now_utc: Optional[datetime] = Field(
        default=None,
        description="Evaluation instant with an explicit offset; server clock if omitted",
    )


class DispatchRecordResponse(BaseModel):
    notification_id: str
    case_id: str
    recipient_kind: str
    recipient_id: str
    template_id: str
    threshold: Optional[str] = Field(default=None, description="4d/3d/2d/1d for reminders")
    delivered: bool
    dispatched_at: str


class TickResponse(BaseModel):
    evaluated_at: str = Field(..., description="Evaluation instant (UTC ISO format)")
    dispatched: List[DispatchRecordResponse] = Field(default_factory=list)
    count: int = Field(default=0, description="Notifications handed to the gateway")


class ReminderStartRequest(BaseModel):
    run_recovery: bool = Field(
        default=True,
        description="Run crash recovery before starting the loop",
    )


class ReminderStartResponse(BaseModel):
    success: bool
    message: str
    recovery_stats: Optional[dict] = Field(default=None, description="Recovery statistics")


class ReminderStopRequest(BaseModel):
    timeout: float = Field(
        default=30.0,
        ge=0,
        description="Seconds to wait for an in-flight tick",
    )


class ReminderStopResponse(BaseModel):
    success: bool
    message: str


class ReminderStatusResponse(BaseModel):
    """Reminder loop and outbox status."""

    running: bool = Field(..., description="Whether the loop is active")
    state: str = Field(..., description="STOPPED, RUNNING or STOPPING")
    tick_interval_seconds: float
    max_workers: int
    war_room_lead_minutes: int
    ticks_completed: int
    ticks_skipped: int
    last_tick_at: Optional[str] = None
    last_dispatch_count: int = 0
    notifications: Dict[str, int] = Field(
        default_factory=dict, description="Outbox rows by status"
    )
    pending_requests: int = Field(default=0, description="Negotiations awaiting a decision")
