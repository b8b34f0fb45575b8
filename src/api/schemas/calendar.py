"""
Calendar API schemas.

Supports /calendar: slot checks, free-slot listings and admin blocks.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class SlotCheckResponse(BaseModel):
    """Availability of one slot in a pool."""

    resource_pool: str = Field(..., description="Jurisdiction checked")
    date: str = Field(..., description="Slot date (YYYY-MM-DD)")
    time: str = Field(..., description="Slot time (HH:MM:SS)")
    available: bool = Field(..., description="True if neither blocked nor booked")
    conflicting_case_id: Optional[str] = Field(
        default=None, description="Case holding the slot"
    )
    block_id: Optional[str] = Field(default=None, description="Block on the slot")


class CalendarSlotModel(BaseModel):
    date: str = Field(..., description="Slot date (YYYY-MM-DD)")
    time: str = Field(..., description="Slot time (HH:MM:SS)")
    day_of_week: str = Field(..., description="Weekday name", examples=["Tuesday"])


class AvailableSlotsResponse(BaseModel):
    """Free slots of a pool over a date range."""

    resource_pool: str
    start_date: str
    end_date: str
    slots: List[CalendarSlotModel] = Field(default_factory=list)
    total: int = Field(default=0, description="Number of free slots")


class BlockSlotRequest(BaseModel):
    """Request to take a slot off the calendar."""

    resource_pool: str = Field(..., min_length=1, description="Jurisdiction")
    date: str = Field(..., description="Slot date (YYYY-MM-DD)", examples=["2026-11-03"])
    time: str = Field(..., description="Slot time (HH:MM or HH:MM:SS)", examples=["09:30"])
    reason: Optional[str] = Field(default=None, description="Why the slot is held")
    blocked_by: Optional[str] = Field(default=None, description="Admin placing the block")


class BlockedSlotResponse(BaseModel):
    """Response representing a calendar block."""

    block_id: str = Field(..., description="Unique block identifier")
    resource_pool: str = Field(..., description="Jurisdiction")
    date: str = Field(..., description="Blocked date")
    time: str = Field(..., description="Blocked time")
    reason: Optional[str] = Field(default=None, description="Why the slot is held")
    blocked_by: Optional[str] = Field(default=None, description="Admin who placed the block")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class BlockedSlotListResponse(BaseModel):
    blocks: List[BlockedSlotResponse] = Field(default_factory=list)
    total: int = Field(default=0, description="Number of blocks returned")


class UnblockResponse(BaseModel):
    success: bool
    block_id: str
    message: str
