"""
Reschedule requests router.

Endpoints under /reschedule-requests for the admin side of attorney
requests: listing, approval and rejection.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Query

from src.docket.entities import NegotiationStatus
from src.docket.errors import DocketError

from ..converters import request_to_response, resolution_to_response
from ..errors import to_http_exception
from ..schemas.negotiation import (
    RescheduleRequestListResponse,
    RescheduleRequestResponse,
    ResolutionResponse,
    ResolveRequest,
)
from .._docket_state import get_docket_service


router = APIRouter()


@router.get("", response_model=RescheduleRequestListResponse)
def list_requests(
    status: Optional[Literal["pending", "approved", "rejected"]] = Query(
        default=None, description="Filter by status"
    ),
    limit: int = Query(default=100, ge=1, le=500, description="Maximum results"),
):
    """List negotiations, oldest first."""
    service = get_docket_service()

    requests = service.list_requests(
        status=NegotiationStatus(status) if status else None,
        limit=limit,
    )
    return RescheduleRequestListResponse(
        requests=[request_to_response(r) for r in requests],
        total=len(requests),
    )


@router.get("/{request_id}", response_model=RescheduleRequestResponse)
def get_request(request_id: str):
    """Get a negotiation by ID."""
    service = get_docket_service()

    try:
        return request_to_response(service.get_request(request_id))
    except DocketError as e:
        raise to_http_exception(e)


@router.post("/{request_id}/approve", response_model=ResolutionResponse)
def approve_request(request_id: str, request: ResolveRequest):
    """
    Approve an attorney request.

    Moves the case, clears its reminders, purges juror applications and
    notifies the attorney and every affected juror. Returns 409
    ALREADY_RESOLVED on a second call, 409 SLOT_UNAVAILABLE if the slot was
    claimed since the request was made (the request stays pending).
    """
    service = get_docket_service()

    try:
        result = service.approve_reschedule(request_id, request.admin_id, request.comments)
    except DocketError as e:
        raise to_http_exception(e)

    return resolution_to_response(result)


@router.post("/{request_id}/reject", response_model=RescheduleRequestResponse)
def reject_request(request_id: str, request: ResolveRequest):
    """
    Reject an attorney request. ``comments`` is required (400 MISSING_REASON).
    """
    service = get_docket_service()

    try:
        rejected = service.reject_reschedule(request_id, request.admin_id, request.comments)
    except DocketError as e:
        raise to_http_exception(e)

    return request_to_response(rejected)
