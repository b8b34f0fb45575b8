"""
Calendar router.

Endpoints under /calendar: check one slot, list free slots of a pool and
manage admin blocks.
"""

from typing import Optional

from fastapi import APIRouter, Query

from src.docket.entities import TimeSlot
from src.docket.errors import DocketError

from ..converters import block_to_response
from ..errors import to_http_exception
from ..schemas.calendar import (
    AvailableSlotsResponse,
    BlockedSlotListResponse,
    BlockedSlotResponse,
    BlockSlotRequest,
    CalendarSlotModel,
    SlotCheckResponse,
    UnblockResponse,
)
from .._docket_state import get_docket_service


router = APIRouter()


@router.get("/check", response_model=SlotCheckResponse)
def check_slot(
    resource_pool: str = Query(..., min_length=1, description="Jurisdiction"),
    date: str = Query(..., description="Slot date (YYYY-MM-DD)"),
    time: str = Query(..., description="Slot time (HH:MM or HH:MM:SS)"),
):
    """Whether a slot is free, and what holds it if not."""
    service = get_docket_service()

    try:
        slot = TimeSlot.parse(date, time)
        availability = service.check_slot(resource_pool, slot)
    except DocketError as e:
        raise to_http_exception(e)

    return SlotCheckResponse(
        resource_pool=resource_pool,
        date=slot.date,
        time=slot.time,
        available=availability.available,
        conflicting_case_id=availability.conflicting_case_id,
        block_id=availability.block_id,
    )


@router.get("/available", response_model=AvailableSlotsResponse)
def list_available_slots(
    resource_pool: str = Query(..., min_length=1, description="Jurisdiction"),
    start_date: str = Query(..., description="First day (YYYY-MM-DD)"),
    end_date: str = Query(..., description="Last day, at most 90 days on (YYYY-MM-DD)"),
):
    """Free weekday slots, every 30 minutes from 09:00 through 17:00."""
    service = get_docket_service()

    try:
        slots = service.available_slots(resource_pool, start_date, end_date)
    except DocketError as e:
        raise to_http_exception(e)

    return AvailableSlotsResponse(
        resource_pool=resource_pool,
        start_date=start_date,
        end_date=end_date,
        slots=[
            CalendarSlotModel(
                date=s.date,
                time=s.time,
                day_of_week=s.local_datetime().strftime("%A"),
            )
            for s in slots
        ],
        total=len(slots),
    )


@router.get("/blocks", response_model=BlockedSlotListResponse)
def list_blocks(
    resource_pool: Optional[str] = Query(default=None, description="Filter by pool"),
    start_date: Optional[str] = Query(default=None, description="From date (YYYY-MM-DD)"),
    end_date: Optional[str] = Query(default=None, description="Through date (YYYY-MM-DD)"),
):
    """List calendar blocks, earliest first."""
    service = get_docket_service()

    try:
        blocks = service.list_blocked_slots(resource_pool, start_date, end_date)
    except DocketError as e:
        raise to_http_exception(e)

    return BlockedSlotListResponse(
        blocks=[block_to_response(b) for b in blocks],
        total=len(blocks),
    )


@router.post("/blocks", response_model=BlockedSlotResponse, status_code=201)
def block_slot(request: BlockSlotRequest):
    """
    Block a slot.

    Returns 409 SLOT_UNAVAILABLE if the slot is already blocked or held by a
    case, 400 if it falls outside weekday business hours.
    """
    service = get_docket_service()

    try:
        block = service.block_slot(
            request.resource_pool,
            TimeSlot.parse(request.date, request.time),
            reason=request.reason,
            blocked_by=request.blocked_by,
        )
    except DocketError as e:
        raise to_http_exception(e)

    return block_to_response(block)


@router.delete("/blocks/{block_id}", response_model=UnblockResponse)
def unblock_slot(block_id: str):
    """Remove a block. 404 if it does not exist."""
    service = get_docket_service()

    try:
        block = service.unblock_slot(block_id)
    except DocketError as e:
        raise to_http_exception(e)

    return UnblockResponse(
        success=True,
        block_id=block_id,
        message=f"Slot {block.slot} unblocked in {block.resource_pool}",
    )
