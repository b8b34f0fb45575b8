"""
Case API schemas.

Supports /cases CRUD, juror applications and the trial window view.
"""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class TimeSlotModel(BaseModel):
    """A trial slot in the case's local time."""

    date: str = Field(..., description="Trial date (YYYY-MM-DD)", examples=["2026-11-03"])
    time: str = Field(..., description="Trial time (HH:MM or HH:MM:SS)", examples=["09:30"])


# =============================================================================
# Cases
# =============================================================================


class CaseCreateRequest(BaseModel):
    """Request to file a case at an initial slot."""

    title: str = Field(..., min_length=1, description="Case title")
    attorney_id: str = Field(..., min_length=1, description="Attorney of record")
    resource_pool: str = Field(
        ...,
        min_length=1,
        description="Jurisdiction the slot is scheduled in (e.g. county)",
    )
    scheduled_date: str = Field(..., description="Trial date (YYYY-MM-DD)")
    scheduled_time: str = Field(..., description="Trial time (HH:MM or HH:MM:SS)")
    timezone_offset_minutes: Optional[int] = Field(
        default=None,
        description="Fixed offset east of UTC in minutes (e.g. -300 for US Eastern)",
    )
    state: Optional[str] = Field(
        default=None,
        description="US state; supplies the offset when timezone_offset_minutes is omitted",
    )
    status: Literal["open_for_applications", "awaiting_trial"] = Field(
        default="open_for_applications",
        description="Initial case status",
    )


class CaseResponse(BaseModel):
    """Response representing a Case."""

    case_id: str = Field(..., description="Unique case identifier")
    title: str = Field(..., description="Case title")
    attorney_id: str = Field(..., description="Attorney of record")
    resource_pool: str = Field(..., description="Jurisdiction")
    scheduled_date: str = Field(..., description="Trial date (local)")
    scheduled_time: str = Field(..., description="Trial time (local)")
    timezone_offset_minutes: int = Field(..., description="Fixed offset east of UTC")
    trial_instant_utc: str = Field(..., description="Trial instant (UTC ISO format)")
    status: str = Field(..., description="Case status")
    reminders: Dict[str, bool] = Field(
        default_factory=dict,
        description="Reminder flags keyed by threshold (4d/3d/2d/1d)",
    )
    war_room_opened: bool = Field(default=False, description="War room already opened")
    schedule_version: int = Field(default=0, description="Approved reschedules so far")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")
    updated_at: str = Field(..., description="Last update timestamp (ISO format)")


# =============================================================================
# Juror Applications
# =============================================================================


class ApplicationCreateRequest(BaseModel):
    """Request to record a juror application."""

    juror_id: str = Field(..., min_length=1, description="Applying juror")
    status: Literal["pending", "approved", "rejected"] = Field(
        default="pending",
        description="Application status",
    )


class ApplicationResponse(BaseModel):
    """Response representing a JurorApplication."""

    application_id: str = Field(..., description="Unique application identifier")
    case_id: str = Field(..., description="Case applied to")
    juror_id: str = Field(..., description="Applying juror")
    status: str = Field(..., description="Application status")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationResponse] = Field(default_factory=list)
    total: int = Field(default=0, description="Number of applications")


# =============================================================================
# Trial Window
# =============================================================================


class TrialWindowResponse(BaseModel):
    """Where a case sits relative to its trial."""

    case_id: str = Field(..., description="Case identifier")
    evaluated_at: str = Field(..., description="Evaluation instant (UTC ISO format)")
    trial_instant_utc: str = Field(..., description="Trial instant (UTC ISO format)")
    minutes_until_trial: int = Field(
        ...,
        description="Whole minutes to trial, rounded away from zero; negative once started",
    )
    war_room_open: bool = Field(..., description="Whether the war room is open")
    trial_started: bool = Field(..., description="Whether the trial instant has passed")
