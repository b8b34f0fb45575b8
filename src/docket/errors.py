"""
Docket-specific exceptions.

Every error carries a stable ``code`` that the API layer maps to an HTTP
status. The hierarchy mirrors how callers are expected to react:

- ValidationError: bad input, surfaced immediately, never retried
- ConflictError: needs a fresh choice from a human, never retried
- StateError: the caller is looking at stale state
- TransientError: delivery problems, retried with bounded backoff
"""

from typing import Optional


class DocketError(Exception):
    """Base exception for all docket errors."""

    code = "DOCKET_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(DocketError):
    """Raised for malformed input (bad slot, missing field, wrong owner)."""

    code = "VALIDATION_ERROR"


class MissingReasonError(ValidationError):
    """Raised when a rejection or decline is submitted without a reason."""

    code = "MISSING_REASON"

    def __init__(self, message: str = "A reason is required for this action"):
        super().__init__(message)


# =============================================================================
# Conflicts
# =============================================================================


class ConflictError(DocketError):
    """Base class for conflicts that need a new choice from the caller."""

    code = "CONFLICT"


class SlotUnavailableError(ConflictError):
    """Raised when a slot is occupied by a case or blocked in the resource pool."""

    code = "SLOT_UNAVAILABLE"

    def __init__(
        self,
        slot: str,
        resource_pool: str,
        conflicting_case_id: Optional[str] = None,
        block_id: Optional[str] = None,
    ):
        self.slot = slot
        self.resource_pool = resource_pool
        self.conflicting_case_id = conflicting_case_id
        self.block_id = block_id
        if conflicting_case_id:
            detail = f" (held by case {conflicting_case_id})"
        elif block_id:
            detail = f" (blocked: {block_id})"
        else:
            detail = ""
        super().__init__(
            f"Slot {slot} is not available in pool '{resource_pool}'{detail}"
        )


class DuplicatePendingRequestError(ConflictError):
    """Raised when a case already has a pending negotiation."""

    code = "DUPLICATE_PENDING_REQUEST"

    def __init__(self, case_id: str, existing_request_id: Optional[str] = None):
        self.case_id = case_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"Case {case_id} already has a pending reschedule negotiation"
            + (f" ({existing_request_id})" if existing_request_id else "")
        )


# =============================================================================
# Stale state
# =============================================================================


class StateError(DocketError):
    """Base class for errors caused by stale client state."""

    code = "STATE_ERROR"


class NotFoundError(StateError):
    """Raised when a case, request or proposal does not exist."""

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class AlreadyResolvedError(StateError):
    """Raised when acting on a negotiation that has left PENDING."""

    code = "ALREADY_RESOLVED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Request {request_id} has already been {status}")


# =============================================================================
# Transient
# =============================================================================


class TransientError(DocketError):
    """Base class for failures that may succeed on retry."""

    code = "TRANSIENT_ERROR"


class NotificationDeliveryError(TransientError):
    """Raised by a gateway when a notification could not be delivered."""

    code = "NOTIFICATION_DELIVERY_FAILED"

    def __init__(self, notification_id: str, reason: str):
        self.notification_id = notification_id
        self.reason = reason
        super().__init__(f"Delivery failed for notification {notification_id}: {reason}")
