"""
Entity to response model conversion shared by the routers.
"""

from src.docket.entities import (
    AdminInitiated,
    AttorneyInitiated,
    BlockedSlot,
    Case,
    DispatchRecord,
    JurorApplication,
    NegotiationRequest,
    TimeSlot,
)
from src.docket.negotiation import ResolutionResult
from src.docket.timezones import to_iso

from .schemas.calendar import BlockedSlotResponse
from .schemas.cases import ApplicationResponse, CaseResponse, TimeSlotModel
from .schemas.negotiation import RescheduleRequestResponse, ResolutionResponse
from .schemas.reminders import DispatchRecordResponse


def slot_from_model(model: TimeSlotModel) -> TimeSlot:
    """Raises ValidationError for malformed slots."""
    return TimeSlot.parse(model.date, model.time)


def slot_to_model(slot: TimeSlot) -> TimeSlotModel:
    return TimeSlotModel(date=slot.date, time=slot.time)


def case_to_response(case: Case) -> CaseResponse:
    return CaseResponse(
        case_id=case.case_id,
        title=case.title,
        attorney_id=case.attorney_id,
        resource_pool=case.resource_pool,
        scheduled_date=case.slot.date,
        scheduled_time=case.slot.time,
        timezone_offset_minutes=case.timezone_offset_minutes,
        trial_instant_utc=to_iso(case.trial_instant_utc),
        status=case.status.value,
        reminders=case.reminders.as_dict(),
        war_room_opened=case.war_room_opened,
        schedule_version=case.schedule_version,
        created_at=case.created_at,
        updated_at=case.updated_at,
    )


def application_to_response(application: JurorApplication) -> ApplicationResponse:
    return ApplicationResponse(
        application_id=application.application_id,
        case_id=application.case_id,
        juror_id=application.juror_id,
        status=application.status.value,
        created_at=application.created_at,
    )


def request_to_response(request: NegotiationRequest) -> RescheduleRequestResponse:
    response = RescheduleRequestResponse(
        request_id=request.request_id,
        case_id=request.case_id,
        kind=request.kind.value,
        status=request.status.value,
        original_slot=slot_to_model(request.original_slot),
        admin_id=request.admin_id,
        admin_comments=request.admin_comments,
        responded_at=request.responded_at,
        created_at=request.created_at,
    )

    variant = request.variant
    if isinstance(variant, AttorneyInitiated):
        response.new_slot = slot_to_model(variant.new_slot)
        response.attorney_id = variant.attorney_id
        response.reason = variant.reason
        response.attorney_comments = variant.attorney_comments
    elif isinstance(variant, AdminInitiated):
        response.proposed_by = variant.proposed_by
        response.offered_slots = [slot_to_model(s) for s in variant.offered_slots]
        if variant.selected_slot is not None:
            response.selected_slot = slot_to_model(variant.selected_slot)

    return response


def resolution_to_response(result: ResolutionResult) -> ResolutionResponse:
    return ResolutionResponse(
        request=request_to_response(result.request),
        case=case_to_response(result.case),
        deleted_applications=result.cascade.deleted_applications,
        affected_juror_ids=list(result.cascade.affected_juror_ids),
        notifications_enqueued=len(result.notifications),
    )


def dispatch_to_response(record: DispatchRecord) -> DispatchRecordResponse:
    return DispatchRecordResponse(
        notification_id=record.notification_id,
        case_id=record.case_id,
        recipient_kind=record.recipient_kind.value,
        recipient_id=record.recipient_id,
        template_id=record.template_id,
        threshold=record.threshold.value if record.threshold else None,
        delivered=record.delivered,
        dispatched_at=record.dispatched_at,
    )


def block_to_response(block: BlockedSlot) -> BlockedSlotResponse:
    return BlockedSlotResponse(
        block_id=block.block_id,
        resource_pool=block.resource_pool,
        date=block.slot.date,
        time=block.slot.time,
        reason=block.reason,
        blocked_by=block.blocked_by,
        created_at=block.created_at,
    )
