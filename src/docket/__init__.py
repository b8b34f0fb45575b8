"""
Trial Docket Core Module.

Scheduling and reschedule negotiation for small-claims trials:
- Conflict-free slot assignment per resource pool
- Admin calendar blocks and free-slot listings
- Attorney requests and admin proposals resolved through one pipeline
- War room gating and exactly-once trial reminders
"""

from .entities import (
    CaseStatus,
    ApplicationStatus,
    NegotiationStatus,
    NegotiationKind,
    RecipientKind,
    NotificationStatus,
    ReminderThreshold,
    TimeSlot,
    ReminderState,
    Case,
    JurorApplication,
    BlockedSlot,
    AttorneyInitiated,
    AdminInitiated,
    NegotiationRequest,
    NotificationRecord,
    DispatchRecord,
    CascadeResult,
)
from .errors import (
    DocketError,
    ValidationError,
    MissingReasonError,
    ConflictError,
    SlotUnavailableError,
    DuplicatePendingRequestError,
    StateError,
    NotFoundError,
    AlreadyResolvedError,
    TransientError,
    NotificationDeliveryError,
)
from .persistence import CaseLifecycleStore
from .conflicts import ScheduleConflictResolver, SlotAvailability
from .window import TrialWindow, TrialWindowCalculator
from .cascade import JurorApplicationCascade
from .notifications import (
    Recipient,
    DeliveryResult,
    NotificationGateway,
    LoggingGateway,
    WebhookGateway,
    NotificationRelay,
)
from .negotiation import RescheduleNegotiationService, ResolutionResult
from .reminders import ReminderDispatcher, ReminderLoopState
from .recovery import RecoveryManager
from .service import DocketService

__all__ = [
    # Entities
    "CaseStatus",
    "ApplicationStatus",
    "NegotiationStatus",
    "NegotiationKind",
    "RecipientKind",
    "NotificationStatus",
    "ReminderThreshold",
    "TimeSlot",
    "ReminderState",
    "Case",
    "JurorApplication",
    "BlockedSlot",
    "AttorneyInitiated",
    "AdminInitiated",
    "NegotiationRequest",
    "NotificationRecord",
    "DispatchRecord",
    "CascadeResult",
    # Errors
    "DocketError",
    "ValidationError",
    "MissingReasonError",
    "ConflictError",
    "SlotUnavailableError",
    "DuplicatePendingRequestError",
    "StateError",
    "NotFoundError",
    "AlreadyResolvedError",
    "TransientError",
    "NotificationDeliveryError",
    # Persistence
    "CaseLifecycleStore",
    # Scheduling
    "ScheduleConflictResolver",
    "SlotAvailability",
    "TrialWindow",
    "TrialWindowCalculator",
    "JurorApplicationCascade",
    # Notifications
    "Recipient",
    "DeliveryResult",
    "NotificationGateway",
    "LoggingGateway",
    "WebhookGateway",
    "NotificationRelay",
    # Negotiation
    "RescheduleNegotiationService",
    "ResolutionResult",
    # Reminders
    "ReminderDispatcher",
    "ReminderLoopState",
    # Recovery
    "RecoveryManager",
    # Service
    "DocketService",
]
