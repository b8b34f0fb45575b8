"""
Reschedule negotiation API schemas.

Supports attorney requests (/cases/{id}/reschedule-requests,
/reschedule-requests/*) and admin proposals (/cases/{id}/proposals/*).
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .cases import CaseResponse, TimeSlotModel


# =============================================================================
# Attorney Requests
# =============================================================================


class RescheduleRequestCreate(BaseModel):
    """Request to open an attorney reschedule request."""

    attorney_id: str = Field(..., min_length=1, description="Attorney of record")
    new_slot: TimeSlotModel = Field(..., description="Requested slot")
    reason: Optional[str] = Field(default=None, description="Why the change is needed")
    comments: Optional[str] = Field(default=None, description="Free-form attorney comments")


class ResolveRequest(BaseModel):
    """Admin decision on an attorney request."""

    admin_id: str = Field(..., min_length=1, description="Deciding admin")
    comments: Optional[str] = Field(
        default=None,
        description="Decision comments (required when rejecting)",
    )


class RescheduleRequestResponse(BaseModel):
    """Response representing a negotiation of either kind."""

    request_id: str = Field(..., description="Unique request identifier")
    case_id: str = Field(..., description="Case being rescheduled")
    kind: str = Field(..., description="attorney_initiated or admin_initiated")
    status: str = Field(..., description="pending, approved or rejected")
    original_slot: TimeSlotModel = Field(..., description="Slot when the negotiation opened")
    new_slot: Optional[TimeSlotModel] = Field(
        default=None, description="Requested slot (attorney requests)"
    )
    attorney_id: Optional[str] = Field(default=None, description="Requesting attorney")
    reason: Optional[str] = Field(default=None, description="Attorney reason")
    attorney_comments: Optional[str] = Field(default=None, description="Attorney comments")
    proposed_by: Optional[str] = Field(default=None, description="Proposing admin")
    offered_slots: List[TimeSlotModel] = Field(
        default_factory=list, description="Offered slots (admin proposals)"
    )
    selected_slot: Optional[TimeSlotModel] = Field(
        default=None, description="Slot the attorney confirmed"
    )
    admin_id: Optional[str] = Field(default=None, description="Resolving admin")
    admin_comments: Optional[str] = Field(default=None, description="Resolution comments")
    responded_at: Optional[str] = Field(default=None, description="Resolution timestamp")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")


class RescheduleRequestListResponse(BaseModel):
    requests: List[RescheduleRequestResponse] = Field(default_factory=list)
    total: int = Field(default=0, description="Number of requests returned")


class ResolutionResponse(BaseModel):
    """Result of an approved negotiation."""

    request: RescheduleRequestResponse
    case: CaseResponse
    deleted_applications: int = Field(..., description="Juror applications purged")
    affected_juror_ids: List[str] = Field(default_factory=list, description="Jurors notified")
    notifications_enqueued: int = Field(..., description="Outbox rows written")


# =============================================================================
# Admin Proposals
# =============================================================================


class ProposalCreateRequest(BaseModel):
    """Admin offer of alternate slots."""

    admin_id: str = Field(..., min_length=1, description="Proposing admin")
    slots: List[TimeSlotModel] = Field(..., min_length=1, description="Offered slots")


class ProposalConfirmRequest(BaseModel):
    """Attorney selection of one offered slot."""

    slot: TimeSlotModel = Field(..., description="Chosen slot")
    attorney_id: Optional[str] = Field(
        default=None, description="Confirming attorney; checked against the case when given"
    )


class ProposalDeclineRequest(BaseModel):
    """Attorney refusal of a proposal."""

    attorney_id: str = Field(..., min_length=1, description="Declining attorney")
    reason: Optional[str] = Field(default=None, description="Why none of the slots work")


class SelectableSlotsResponse(BaseModel):
    """Offered slots and the subset still free."""

    case_id: str
    request_id: str
    offered_slots: List[TimeSlotModel] = Field(default_factory=list)
    selectable_slots: List[TimeSlotModel] = Field(default_factory=list)
