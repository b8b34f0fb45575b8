"""
Docket Domain Entities.

- TimeSlot: A (date, time) trial occurrence inside a resource pool
- ReminderState: The four reminder flags of a case, as one value
- Case: A small-claims case with its scheduled slot
- JurorApplication: A juror's application to sit on a case
- BlockedSlot: An admin hold that takes a pool slot off the calendar
- NegotiationRequest: A reschedule negotiation, tagged by who initiated it
- NotificationRecord: One outbox entry for the notification gateway
- DispatchRecord: What a reminder tick handed to the gateway

Status values are lower-case strings because they are persisted verbatim
and exposed through the API.
"""

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from .errors import ValidationError
from .timezones import local_to_utc, now_iso


_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{1,2}:\d{2}(:\d{2})?$")


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


# =============================================================================
# Enums
# =============================================================================


class CaseStatus(str, Enum):
    """
    Case lifecycle values relevant to scheduling.

    - OPEN_FOR_APPLICATIONS: On the job board, jurors may apply
    - AWAITING_TRIAL: Jury seated, waiting for the trial slot
    - JOIN_TRIAL: War room is open
    - COMPLETED / CANCELLED: Terminal, ignored by the scheduler
    """

    OPEN_FOR_APPLICATIONS = "open_for_applications"
    AWAITING_TRIAL = "awaiting_trial"
    JOIN_TRIAL = "join_trial"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CaseStatus.COMPLETED, CaseStatus.CANCELLED)


class ApplicationStatus(str, Enum):
    """Juror application values."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NegotiationStatus(str, Enum):
    """
    Reschedule negotiation values.

    PENDING -> APPROVED and PENDING -> REJECTED are the only transitions.
    Both targets are terminal.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NegotiationKind(str, Enum):
    """Which party opened the negotiation."""

    ATTORNEY_INITIATED = "attorney_initiated"
    ADMIN_INITIATED = "admin_initiated"


class RecipientKind(str, Enum):
    """Who a notification is addressed to."""

    ATTORNEY = "attorney"
    JUROR = "juror"
    ADMIN = "admin"


class NotificationStatus(str, Enum):
    """
    Outbox row values.

    - PENDING: Committed, never attempted
    - SENDING: Claimed by a relay, attempts in flight
    - DELIVERED: Gateway accepted it
    - FAILED: Retries exhausted
    - ABANDONED: Found SENDING after a crash; never re-sent
    """

    PENDING = "pending"
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"
    ABANDONED = "abandoned"


class ReminderThreshold(str, Enum):
    """Reminder lead times before trial."""

    FOUR_DAYS = "4d"
    THREE_DAYS = "3d"
    TWO_DAYS = "2d"
    ONE_DAY = "1d"

    @property
    def days(self) -> int:
        return int(self.value[:-1])

    @property
    def minutes(self) -> int:
        return self.days * 24 * 60

    @property
    def column(self) -> str:
        """Column name in the cases table."""
        return f"reminder_{self.value}_sent"


# Evaluation order: widest lead time first
REMINDER_THRESHOLDS = (
    ReminderThreshold.FOUR_DAYS,
    ReminderThreshold.THREE_DAYS,
    ReminderThreshold.TWO_DAYS,
    ReminderThreshold.ONE_DAY,
)


# =============================================================================
# Value Objects
# =============================================================================


@dataclass(frozen=True)
class TimeSlot:
    """
    A (date, time) pair denoting one trial occurrence.

    Stored normalized: date as YYYY-MM-DD, time as HH:MM:SS. Two slots are
    equal iff both normalized parts are equal.
    """

    date: str
    time: str

    @classmethod
    def parse(cls, date: str, time: str) -> "TimeSlot":
        """
        Validate and normalize a slot.

        Accepts HH:MM or HH:MM:SS for the time part.

        Raises:
            ValidationError: If either part is malformed or not a real date/time
        """
        if not isinstance(date, str) or not _DATE_RE.match(date.strip()):
            raise ValidationError(f"Invalid date format '{date}'. Use YYYY-MM-DD")
        if not isinstance(time, str) or not _TIME_RE.match(time.strip()):
            raise ValidationError(f"Invalid time format '{time}'. Use HH:MM or HH:MM:SS")

        parts = time.strip().split(":")
        if len(parts) == 2:
            parts.append("00")
        normalized_time = ":".join(p.zfill(2) for p in parts)

        try:
            datetime.strptime(f"{date.strip()} {normalized_time}", "%Y-%m-%d %H:%M:%S")
        except ValueError as e:
            raise ValidationError(f"Invalid slot {date} {time}: {e}") from e

        return cls(date=date.strip(), time=normalized_time)

    @classmethod
    def from_dict(cls, data: dict) -> "TimeSlot":
        if not isinstance(data, dict) or "date" not in data or "time" not in data:
            raise ValidationError("Time slot must have date and time")
        return cls.parse(data["date"], data["time"])

    def to_dict(self) -> dict:
        return {"date": self.date, "time": self.time}

    def local_datetime(self) -> datetime:
        """Naive wall-clock datetime in the case's local offset."""
        return datetime.strptime(f"{self.date} {self.time}", "%Y-%m-%d %H:%M:%S")

    def __str__(self) -> str:
        return f"{self.date} {self.time}"


@dataclass(frozen=True)
class ReminderState:
    """
    The four reminder flags of a case.

    Flags only move false -> true through ``with_sent``. ``cleared`` is the
    single way back and is used only by a reschedule approval.
    """

    sent_4d: bool = False
    sent_3d: bool = False
    sent_2d: bool = False
    sent_1d: bool = False

    def is_sent(self, threshold: ReminderThreshold) -> bool:
        return getattr(self, f"sent_{threshold.value}")

    def with_sent(self, threshold: ReminderThreshold) -> "ReminderState":
        return replace(self, **{f"sent_{threshold.value}": True})

    @classmethod
    def cleared(cls) -> "ReminderState":
        return cls()

    def pending(self) -> list[ReminderThreshold]:
        """Thresholds whose reminder has not been sent yet."""
        return [t for t in REMINDER_THRESHOLDS if not self.is_sent(t)]

    def as_dict(self) -> dict:
        return {t.value: self.is_sent(t) for t in REMINDER_THRESHOLDS}


# =============================================================================
# Case / Applications
# =============================================================================


@dataclass
class Case:
    """
    A case with one scheduled trial slot.

    The slot is wall-clock time at ``timezone_offset_minutes`` east of UTC.
    ``trial_instant_utc`` is the only value used for time comparisons.
    ``schedule_version`` increases by one on every approved reschedule.
    """

    case_id: str
    title: str
    attorney_id: str
    resource_pool: str
    slot: TimeSlot
    timezone_offset_minutes: int = 0
    status: CaseStatus = CaseStatus.OPEN_FOR_APPLICATIONS
    reminders: ReminderState = field(default_factory=ReminderState)
    war_room_opened: bool = False
    schedule_version: int = 0
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        title: str,
        attorney_id: str,
        resource_pool: str,
        slot: TimeSlot,
        timezone_offset_minutes: int = 0,
        status: CaseStatus = CaseStatus.OPEN_FOR_APPLICATIONS,
    ) -> "Case":
        """Create a new Case with generated ID."""
        return cls(
            case_id=generate_uuid(),
            title=title,
            attorney_id=attorney_id,
            resource_pool=resource_pool,
            slot=slot,
            timezone_offset_minutes=timezone_offset_minutes,
            status=status,
        )

    @property
    def trial_instant_utc(self) -> datetime:
        return local_to_utc(self.slot.local_datetime(), self.timezone_offset_minutes)

    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass
class JurorApplication:
    """A juror's application to a case. Deleted wholesale on reschedule."""

    application_id: str
    case_id: str
    juror_id: str
    status: ApplicationStatus = ApplicationStatus.PENDING
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        case_id: str,
        juror_id: str,
        status: ApplicationStatus = ApplicationStatus.PENDING,
    ) -> "JurorApplication":
        return cls(
            application_id=generate_uuid(),
            case_id=case_id,
            juror_id=juror_id,
            status=status,
        )


@dataclass
class BlockedSlot:
    """An admin hold that keeps one pool slot off the calendar."""

    block_id: str
    resource_pool: str
    slot: TimeSlot
    reason: Optional[str] = None
    blocked_by: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        resource_pool: str,
        slot: TimeSlot,
        reason: Optional[str] = None,
        blocked_by: Optional[str] = None,
    ) -> "BlockedSlot":
        return cls(
            block_id=generate_uuid(),
            resource_pool=resource_pool,
            slot=slot,
            reason=reason,
            blocked_by=blocked_by,
        )


# =============================================================================
# Negotiation
# =============================================================================


@dataclass(frozen=True)
class AttorneyInitiated:
    """Attorney asks for one specific new slot; an admin decides."""

    attorney_id: str
    new_slot: TimeSlot
    reason: Optional[str] = None
    attorney_comments: Optional[str] = None

    kind = NegotiationKind.ATTORNEY_INITIATED


@dataclass(frozen=True)
class AdminInitiated:
    """Admin offers alternate slots; the attorney picks exactly one."""

    proposed_by: str
    offered_slots: tuple[TimeSlot, ...]
    selected_slot: Optional[TimeSlot] = None

    kind = NegotiationKind.ADMIN_INITIATED


NegotiationVariant = Union[AttorneyInitiated, AdminInitiated]


@dataclass
class NegotiationRequest:
    """
    One reschedule negotiation for a case.

    Mutability rules:
    - request_id, case_id, variant payload, original_slot, created_at: Immutable
    - status, admin_id, admin_comments, responded_at: Write-once on resolution

    ``admin_comments`` holds whatever comment accompanied the resolution: the
    admin decision note, or the attorney reason when a proposal is declined.
    """

    request_id: str
    case_id: str
    variant: NegotiationVariant
    original_slot: TimeSlot
    status: NegotiationStatus = NegotiationStatus.PENDING
    admin_id: Optional[str] = None
    admin_comments: Optional[str] = None
    responded_at: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        case_id: str,
        variant: NegotiationVariant,
        original_slot: TimeSlot,
    ) -> "NegotiationRequest":
        """Create a new PENDING negotiation with generated ID."""
        return cls(
            request_id=generate_uuid(),
            case_id=case_id,
            variant=variant,
            original_slot=original_slot,
        )

    @property
    def kind(self) -> NegotiationKind:
        return self.variant.kind

    def is_terminal(self) -> bool:
        return self.status != NegotiationStatus.PENDING


# =============================================================================
# Notifications
# =============================================================================


@dataclass
class NotificationRecord:
    """
    Outbox entry for one recipient.

    ``dedupe_key`` is unique in the store; enqueueing the same key twice is
    a no-op, which is what makes cascades and reminders safe to replay.
    """

    notification_id: str
    recipient_kind: RecipientKind
    recipient_id: str
    template_id: str
    dedupe_key: str
    case_id: Optional[str] = None
    payload: dict = field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    sent_at: Optional[str] = None

    @classmethod
    def create(
        cls,
        recipient_kind: RecipientKind,
        recipient_id: str,
        template_id: str,
        dedupe_key: str,
        case_id: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> "NotificationRecord":
        return cls(
            notification_id=generate_uuid(),
            recipient_kind=recipient_kind,
            recipient_id=recipient_id,
            template_id=template_id,
            dedupe_key=dedupe_key,
            case_id=case_id,
            payload=payload or {},
        )


@dataclass(frozen=True)
class DispatchRecord:
    """Returned by a reminder tick for every notification it handed off."""

    notification_id: str
    case_id: str
    recipient_kind: RecipientKind
    recipient_id: str
    template_id: str
    threshold: Optional[ReminderThreshold]
    delivered: bool
    dispatched_at: str


@dataclass(frozen=True)
class CascadeResult:
    """Outcome of a juror application purge."""

    case_id: str
    deleted_applications: int
    affected_juror_ids: tuple[str, ...]
    notifications: tuple[NotificationRecord, ...] = ()

    @property
    def notifications_enqueued(self) -> int:
        return len(self.notifications)
