"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .cases import (
    TimeSlotModel,
    CaseCreateRequest,
    CaseResponse,
    ApplicationCreateRequest,
    ApplicationResponse,
    ApplicationListResponse,
    TrialWindowResponse,
)
from .negotiation import (
    RescheduleRequestCreate,
    ResolveRequest,
    RescheduleRequestResponse,
    RescheduleRequestListResponse,
    ResolutionResponse,
    ProposalCreateRequest,
    ProposalConfirmRequest,
    ProposalDeclineRequest,
    SelectableSlotsResponse,
)
from .calendar import (
    SlotCheckResponse,
    CalendarSlotModel,
    AvailableSlotsResponse,
    BlockSlotRequest,
    BlockedSlotResponse,
    BlockedSlotListResponse,
    UnblockResponse,
)
from .reminders import (
    TickRequest,
    TickResponse,
    DispatchRecordResponse,
    ReminderStartRequest,
    ReminderStartResponse,
    ReminderStopRequest,
    ReminderStopResponse,
    ReminderStatusResponse,
)

__all__ = [
    "TimeSlotModel",
    "CaseCreateRequest",
    "CaseResponse",
    "ApplicationCreateRequest",
    "ApplicationResponse",
    "ApplicationListResponse",
    "TrialWindowResponse",
    "RescheduleRequestCreate",
    "ResolveRequest",
    "RescheduleRequestResponse",
    "RescheduleRequestListResponse",
    "ResolutionResponse",
    "ProposalCreateRequest",
    "ProposalConfirmRequest",
    "ProposalDeclineRequest",
    "SelectableSlotsResponse",
    "SlotCheckResponse",
    "CalendarSlotModel",
    "AvailableSlotsResponse",
    "BlockSlotRequest",
    "BlockedSlotResponse",
    "BlockedSlotListResponse",
    "UnblockResponse",
    "TickRequest",
    "TickResponse",
    "DispatchRecordResponse",
    "ReminderStartRequest",
    "ReminderStartResponse",
    "ReminderStopRequest",
    "ReminderStopResponse",
    "ReminderStatusResponse",
]
