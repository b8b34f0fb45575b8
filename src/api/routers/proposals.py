"""
Proposals router.

Endpoints under /cases/{case_id}/proposals for admin-offered alternate
slots: offer, inspect, confirm and decline.
"""

from fastapi import APIRouter

from src.docket.errors import DocketError

from ..converters import (
    request_to_response,
    resolution_to_response,
    slot_from_model,
    slot_to_model,
)
from ..errors import to_http_exception
from ..schemas.negotiation import (
    ProposalConfirmRequest,
    ProposalCreateRequest,
    ProposalDeclineRequest,
    RescheduleRequestResponse,
    ResolutionResponse,
    SelectableSlotsResponse,
)
from .._docket_state import get_docket_service


router = APIRouter()


@router.post(
    "/{case_id}/proposals",
    response_model=RescheduleRequestResponse,
    status_code=201,
)
def propose_slots(case_id: str, request: ProposalCreateRequest):
    """Offer alternate slots to the case's attorney."""
    service = get_docket_service()

    try:
        proposal = service.propose_alternate_slots(
            case_id,
            request.admin_id,
            [slot_from_model(s) for s in request.slots],
        )
    except DocketError as e:
        raise to_http_exception(e)

    return request_to_response(proposal)


@router.get("/{case_id}/proposals/slots", response_model=SelectableSlotsResponse)
def get_selectable_slots(case_id: str):
    """Offered slots of the pending proposal and which are still free."""
    service = get_docket_service()

    try:
        proposal = service.get_pending_proposal(case_id)
        selectable = service.selectable_slots(case_id)
    except DocketError as e:
        raise to_http_exception(e)

    return SelectableSlotsResponse(
        case_id=case_id,
        request_id=proposal.request_id,
        offered_slots=[slot_to_model(s) for s in proposal.variant.offered_slots],
        selectable_slots=[slot_to_model(s) for s in selectable],
    )


@router.post("/{case_id}/proposals/confirm", response_model=ResolutionResponse)
def confirm_slot(case_id: str, request: ProposalConfirmRequest):
    """
    Confirm one offered slot.

    Returns 409 SLOT_UNAVAILABLE if it was claimed since the offer; the
    proposal stays pending and the other slots remain selectable.
    """
    service = get_docket_service()

    try:
        result = service.confirm_proposed_slot(
            case_id,
            slot_from_model(request.slot),
            attorney_id=request.attorney_id,
        )
    except DocketError as e:
        raise to_http_exception(e)

    return resolution_to_response(result)


@router.post("/{case_id}/proposals/decline", response_model=RescheduleRequestResponse)
def decline_proposal(case_id: str, request: ProposalDeclineRequest):
    """Decline the pending proposal. ``reason`` is required (400 MISSING_REASON)."""
    service = get_docket_service()

    try:
        declined = service.decline_proposal(case_id, request.attorney_id, request.reason)
    except DocketError as e:
        raise to_http_exception(e)

    return request_to_response(declined)
