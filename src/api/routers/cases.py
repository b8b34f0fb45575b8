"""
Cases router.

Endpoints under /cases for filing cases, juror applications, the trial
window view and opening attorney reschedule requests.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from src.docket.entities import ApplicationStatus, CaseStatus
from src.docket.errors import DocketError
from src.docket.timezones import to_iso, utc_now

from ..converters import (
    application_to_response,
    case_to_response,
    request_to_response,
    slot_from_model,
)
from ..errors import to_http_exception
from ..schemas.cases import (
    ApplicationCreateRequest,
    ApplicationListResponse,
    ApplicationResponse,
    CaseCreateRequest,
    CaseResponse,
    TimeSlotModel,
    TrialWindowResponse,
)
from ..schemas.negotiation import (
    RescheduleRequestCreate,
    RescheduleRequestListResponse,
    RescheduleRequestResponse,
)
from .._docket_state import get_docket_service


router = APIRouter()


@router.post("", response_model=CaseResponse, status_code=201)
def file_case(request: CaseCreateRequest):
    """
    File a case at its initial slot.

    Returns 409 SLOT_UNAVAILABLE if another active case in the same pool
    already holds the slot; nothing is saved in that case.
    """
    service = get_docket_service()

    try:
        case = service.file_case(
            title=request.title,
            attorney_id=request.attorney_id,
            resource_pool=request.resource_pool,
            slot=slot_from_model(
                TimeSlotModel(date=request.scheduled_date, time=request.scheduled_time)
            ),
            timezone_offset_minutes=request.timezone_offset_minutes,
            state=request.state,
            status=CaseStatus(request.status),
        )
    except DocketError as e:
        raise to_http_exception(e)

    return case_to_response(case)


@router.get("/{case_id}", response_model=CaseResponse)
def get_case(case_id: str):
    """Get a case by ID."""
    service = get_docket_service()

    try:
        return case_to_response(service.get_case(case_id))
    except DocketError as e:
        raise to_http_exception(e)


@router.post(
    "/{case_id}/applications",
    response_model=ApplicationResponse,
    status_code=201,
)
def add_application(case_id: str, request: ApplicationCreateRequest):
    """Record a juror application for a case."""
    service = get_docket_service()

    try:
        application = service.add_juror_application(
            case_id,
            request.juror_id,
            status=ApplicationStatus(request.status),
        )
    except DocketError as e:
        raise to_http_exception(e)

    return application_to_response(application)


@router.get("/{case_id}/applications", response_model=ApplicationListResponse)
def list_applications(case_id: str):
    """List juror applications for a case."""
    service = get_docket_service()

    try:
        applications = service.list_applications(case_id)
    except DocketError as e:
        raise to_http_exception(e)

    return ApplicationListResponse(
        applications=[application_to_response(a) for a in applications],
        total=len(applications),
    )


@router.get("/{case_id}/window", response_model=TrialWindowResponse)
def get_trial_window(
    case_id: str,
    now: Optional[datetime] = Query(
        default=None,
        description="Evaluation instant with explicit offset; server clock if omitted",
    ),
):
    """
    Evaluate the case against the clock.

    Read-only: no reminder is sent and the war room flag is not changed.
    """
    service = get_docket_service()

    if now is not None and now.tzinfo is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "VALIDATION_ERROR", "message": "now must carry a UTC offset"},
        )

    evaluated_at = now or utc_now()
    try:
        case = service.get_case(case_id)
        window = service.evaluate_case_window(case_id, evaluated_at)
    except DocketError as e:
        raise to_http_exception(e)

    return TrialWindowResponse(
        case_id=case_id,
        evaluated_at=to_iso(evaluated_at),
        trial_instant_utc=to_iso(case.trial_instant_utc),
        minutes_until_trial=window.minutes_until_trial,
        war_room_open=window.war_room_open,
        trial_started=window.trial_started,
    )


@router.post(
    "/{case_id}/reschedule-requests",
    response_model=RescheduleRequestResponse,
    status_code=201,
)
def create_reschedule_request(case_id: str, request: RescheduleRequestCreate):
    """
    Open an attorney reschedule request.

    Returns 409 DUPLICATE_PENDING_REQUEST if a negotiation is already
    pending for the case, 409 SLOT_UNAVAILABLE if the slot is taken.
    """
    service = get_docket_service()

    try:
        created = service.create_reschedule_request(
            case_id=case_id,
            attorney_id=request.attorney_id,
            new_slot=slot_from_model(request.new_slot),
            reason=request.reason,
            comments=request.comments,
        )
    except DocketError as e:
        raise to_http_exception(e)

    return request_to_response(created)


@router.get(
    "/{case_id}/reschedule-requests",
    response_model=RescheduleRequestListResponse,
)
def list_case_requests(case_id: str):
    """All negotiations for a case, oldest first."""
    service = get_docket_service()

    try:
        requests = service.list_requests(case_id=case_id)
    except DocketError as e:
        raise to_http_exception(e)

    return RescheduleRequestListResponse(
        requests=[request_to_response(r) for r in requests],
        total=len(requests),
    )
