"""
Reschedule Negotiation Service.

Two ways to move a case to a new slot, both modeled as one
``NegotiationRequest`` with a tagged variant:

- AttorneyInitiated: attorney requests one slot, an admin approves/rejects
- AdminInitiated: admin offers alternate slots, the attorney confirms one
  or declines

State machine per request:
    PENDING -> APPROVED   (terminal)
    PENDING -> REJECTED   (terminal)

Both variants approve through ``_resolve_approved``, one transaction that:
1. Re-checks the request is still PENDING (CAS on status)
2. Re-checks the slot is in the future and free (the unique slot index
   is the final word)
3. Moves the case and clears its reminder flags
4. Purges juror applications and reopens the case
5. Writes the outbox rows

Notifications are delivered only after that transaction commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from .cascade import JurorApplicationCascade
from .conflicts import ScheduleConflictResolver
from .entities import (
    AdminInitiated,
    AttorneyInitiated,
    Case,
    CascadeResult,
    NegotiationKind,
    NegotiationRequest,
    NegotiationStatus,
    NotificationRecord,
    RecipientKind,
    TimeSlot,
)
from .errors import (
    AlreadyResolvedError,
    DuplicatePendingRequestError,
    MissingReasonError,
    NotFoundError,
    ValidationError,
)
from .locks import CaseLockRegistry
from .notifications import (
    TEMPLATE_RESCHEDULE_APPROVED,
    TEMPLATE_RESCHEDULE_CONFIRMED,
    TEMPLATE_RESCHEDULE_DECLINED,
    TEMPLATE_RESCHEDULE_PROPOSED,
    TEMPLATE_RESCHEDULE_REJECTED,
    TEMPLATE_RESCHEDULE_REQUESTED,
    NotificationRelay,
)
from .persistence import CaseLifecycleStore
from .timezones import local_to_utc, to_iso, utc_now


logger = logging.getLogger(__name__)

# Upper bound on slots in one admin proposal
MAX_OFFERED_SLOTS = 3


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of an approved negotiation."""

    request: NegotiationRequest
    case: Case
    cascade: CascadeResult
    notifications: tuple[NotificationRecord, ...]


def _dedupe_key(template_id: str, request_id: str, recipient_id: str) -> str:
    return f"{template_id}:{request_id}:{recipient_id}"


def _require_reason(reason: Optional[str]) -> str:
    if reason is None or not reason.strip():
        raise MissingReasonError()
    return reason.strip()


class RescheduleNegotiationService:
    """
    Creates and resolves reschedule negotiations.

    Per-case locks serialize operations on one case inside this process.
    Across processes the store's CAS updates and unique indexes decide.
    """

    def __init__(
        self,
        store: CaseLifecycleStore,
        resolver: ScheduleConflictResolver,
        cascade: JurorApplicationCascade,
        relay: NotificationRelay,
        locks: Optional[CaseLockRegistry] = None,
        clock: Callable[[], datetime] = utc_now,
        admin_recipients: Sequence[str] = (),
    ):
        self.store = store
        self.resolver = resolver
        self.cascade = cascade
        self.relay = relay
        self.locks = locks or CaseLockRegistry()
        self.clock = clock
        self.admin_recipients = tuple(dict.fromkeys(admin_recipients))

    # =========================================================================
    # Attorney-initiated
    # =========================================================================

    def create_request(
        self,
        case_id: str,
        attorney_id: str,
        new_slot: TimeSlot,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> NegotiationRequest:
        """
        Open an attorney reschedule request and notify the admins.

        The request row and one outbox row per admin recipient commit
        together.

        Raises:
            NotFoundError: Case does not exist
            ValidationError: Not the case's attorney, case is closed, or the
                slot equals the current one or is not in the future
            DuplicatePendingRequestError: A negotiation is already pending
            SlotUnavailableError: Requested slot is taken or blocked
        """
        with self.locks.hold(case_id):
            case = self._require_open_case(case_id)
            if case.attorney_id != attorney_id:
                raise ValidationError(
                    f"Attorney {attorney_id} is not the attorney of record for case {case_id}"
                )
            if new_slot == case.slot:
                raise ValidationError("Requested slot is the case's current slot")
            self._require_future(case, new_slot)

            self._require_no_pending(case_id)
            self.resolver.require_available(
                new_slot, case.resource_pool, exclude_case_id=case_id
            )

            request = NegotiationRequest.create(
                case_id=case_id,
                variant=AttorneyInitiated(
                    attorney_id=attorney_id,
                    new_slot=new_slot,
                    reason=reason,
                    attorney_comments=comments,
                ),
                original_slot=case.slot,
            )
            records = [
                NotificationRecord.create(
                    recipient_kind=RecipientKind.ADMIN,
                    recipient_id=admin_id,
                    template_id=TEMPLATE_RESCHEDULE_REQUESTED,
                    dedupe_key=_dedupe_key(
                        TEMPLATE_RESCHEDULE_REQUESTED, request.request_id, admin_id
                    ),
                    case_id=case_id,
                    payload={
                        "case_id": case_id,
                        "title": case.title,
                        "request_id": request.request_id,
                        "attorney_id": attorney_id,
                        "current_slot": case.slot.to_dict(),
                        "requested_slot": new_slot.to_dict(),
                        "reason": reason,
                    },
                )
                for admin_id in self.admin_recipients
            ]
            with self.store.transaction() as conn:
                self.store.create_negotiation(request, conn=conn)
                for record in records:
                    self.store.enqueue_notification(record, conn=conn)

        logger.info(
            f"Reschedule request {request.request_id} created for case {case_id}: "
            f"{case.slot} -> {new_slot}"
        )
        self._deliver(records)
        return request

    def approve(
        self,
        request_id: str,
        admin_id: str,
        comments: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Approve an attorney request and move the case.

        Raises:
            NotFoundError: Request does not exist
            AlreadyResolvedError: Request is no longer pending
            ValidationError: Request is an admin proposal (use confirm_slot)
            SlotUnavailableError: Requested slot was claimed since creation;
                the request stays pending
        """
        request = self.get_request(request_id)
        if request.is_terminal():
            raise AlreadyResolvedError(request_id, request.status.value)
        if not isinstance(request.variant, AttorneyInitiated):
            raise ValidationError(
                f"Request {request_id} is an admin proposal; the attorney confirms it"
            )

        with self.locks.hold(request.case_id):
            result = self._resolve_approved(
                request_id,
                slot=request.variant.new_slot,
                party_kind=RecipientKind.ATTORNEY,
                party_id=request.variant.attorney_id,
                template_id=TEMPLATE_RESCHEDULE_APPROVED,
                admin_id=admin_id,
                comments=comments,
            )

        self._deliver(result.notifications)
        return result

    def reject(
        self,
        request_id: str,
        admin_id: str,
        comments: Optional[str],
    ) -> NegotiationRequest:
        """
        Reject an attorney request. The case is not touched.

        Raises:
            MissingReasonError: ``comments`` is empty
            NotFoundError: Request does not exist
            AlreadyResolvedError: Request is no longer pending
            ValidationError: Request is an admin proposal
        """
        reason = _require_reason(comments)
        request = self.get_request(request_id)
        if not isinstance(request.variant, AttorneyInitiated):
            raise ValidationError(
                f"Request {request_id} is an admin proposal; the attorney declines it"
            )

        attorney_id = request.variant.attorney_id
        with self.locks.hold(request.case_id):
            with self.store.transaction() as conn:
                resolved = self.store.resolve_negotiation(
                    request_id,
                    NegotiationStatus.REJECTED,
                    conn,
                    admin_id=admin_id,
                    admin_comments=reason,
                )
                record = NotificationRecord.create(
                    recipient_kind=RecipientKind.ATTORNEY,
                    recipient_id=attorney_id,
                    template_id=TEMPLATE_RESCHEDULE_REJECTED,
                    dedupe_key=_dedupe_key(TEMPLATE_RESCHEDULE_REJECTED, request_id, attorney_id),
                    case_id=request.case_id,
                    payload={
                        "case_id": request.case_id,
                        "request_id": request_id,
                        "requested_slot": request.variant.new_slot.to_dict(),
                        "reason": reason,
                    },
                )
                self.store.enqueue_notification(record, conn=conn)

        logger.info(f"Reschedule request {request_id} rejected by {admin_id}")
        self._deliver([record])
        return resolved

    # =========================================================================
    # Admin-initiated
    # =========================================================================

    def propose_slots(
        self,
        case_id: str,
        admin_id: str,
        slots: Sequence[TimeSlot],
    ) -> NegotiationRequest:
        """
        Offer alternate slots to the case's attorney.

        Every offered slot must be free when offered; each is checked again
        when the attorney confirms.

        Raises:
            NotFoundError: Case does not exist
            ValidationError: No slots, too many, duplicates, the current
                slot among them, or the case is closed
            DuplicatePendingRequestError: A negotiation is already pending
            SlotUnavailableError: An offered slot is taken
        """
        offered = tuple(slots)
        if not offered:
            raise ValidationError("At least one slot must be offered")
        if len(offered) > MAX_OFFERED_SLOTS:
            raise ValidationError(f"At most {MAX_OFFERED_SLOTS} slots may be offered")
        if len(set(offered)) != len(offered):
            raise ValidationError("Offered slots must be distinct")

        with self.locks.hold(case_id):
            case = self._require_open_case(case_id)
            if case.slot in offered:
                raise ValidationError("Offered slots must differ from the current slot")
            for slot in offered:
                self._require_future(case, slot)

            self._require_no_pending(case_id)
            for slot in offered:
                self.resolver.require_available(
                    slot, case.resource_pool, exclude_case_id=case_id
                )

            proposal = NegotiationRequest.create(
                case_id=case_id,
                variant=AdminInitiated(proposed_by=admin_id, offered_slots=offered),
                original_slot=case.slot,
            )
            record = NotificationRecord.create(
                recipient_kind=RecipientKind.ATTORNEY,
                recipient_id=case.attorney_id,
                template_id=TEMPLATE_RESCHEDULE_PROPOSED,
                dedupe_key=_dedupe_key(
                    TEMPLATE_RESCHEDULE_PROPOSED, proposal.request_id, case.attorney_id
                ),
                case_id=case_id,
                payload={
                    "case_id": case_id,
                    "request_id": proposal.request_id,
                    "current_slot": case.slot.to_dict(),
                    "offered_slots": [s.to_dict() for s in offered],
                },
            )
            with self.store.transaction() as conn:
                self.store.create_negotiation(proposal, conn=conn)
                self.store.enqueue_notification(record, conn=conn)

        logger.info(
            f"Admin {admin_id} proposed {len(offered)} slots for case {case_id} "
            f"({proposal.request_id})"
        )
        self._deliver([record])
        return proposal

    def confirm_slot(
        self,
        case_id: str,
        chosen_slot: TimeSlot,
        attorney_id: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Accept one offered slot and move the case.

        Raises:
            NotFoundError: No pending proposal for the case
            ValidationError: Slot was not offered, or wrong attorney
            SlotUnavailableError: Slot was claimed since the offer; the
                proposal stays pending with all offered slots
        """
        with self.locks.hold(case_id):
            proposal = self.get_pending_proposal(case_id)
            if attorney_id is not None:
                self._require_attorney(case_id, attorney_id)
            if chosen_slot not in proposal.variant.offered_slots:
                raise ValidationError(f"Slot {chosen_slot} was not offered for case {case_id}")

            admin_id = proposal.variant.proposed_by
            result = self._resolve_approved(
                proposal.request_id,
                slot=chosen_slot,
                party_kind=RecipientKind.ADMIN,
                party_id=admin_id,
                template_id=TEMPLATE_RESCHEDULE_CONFIRMED,
                admin_id=admin_id,
                comments=None,
                selected_slot=chosen_slot,
            )

        self._deliver(result.notifications)
        return result

    def decline_proposal(
        self,
        case_id: str,
        attorney_id: str,
        reason: Optional[str],
    ) -> NegotiationRequest:
        """
        Turn down an admin proposal. The case keeps its slot.

        Raises:
            MissingReasonError: ``reason`` is empty
            NotFoundError: No pending proposal for the case
            ValidationError: Not the case's attorney
        """
        reason = _require_reason(reason)
        with self.locks.hold(case_id):
            proposal = self.get_pending_proposal(case_id)
            self._require_attorney(case_id, attorney_id)

            admin_id = proposal.variant.proposed_by
            with self.store.transaction() as conn:
                resolved = self.store.resolve_negotiation(
                    proposal.request_id,
                    NegotiationStatus.REJECTED,
                    conn,
                    admin_comments=reason,
                )
                record = NotificationRecord.create(
                    recipient_kind=RecipientKind.ADMIN,
                    recipient_id=admin_id,
                    template_id=TEMPLATE_RESCHEDULE_DECLINED,
                    dedupe_key=_dedupe_key(
                        TEMPLATE_RESCHEDULE_DECLINED, proposal.request_id, admin_id
                    ),
                    case_id=case_id,
                    payload={
                        "case_id": case_id,
                        "request_id": proposal.request_id,
                        "attorney_id": attorney_id,
                        "reason": reason,
                    },
                )
                self.store.enqueue_notification(record, conn=conn)

        logger.info(f"Attorney {attorney_id} declined proposal {proposal.request_id}")
        self._deliver([record])
        return resolved

    def selectable_slots(self, case_id: str) -> list[TimeSlot]:
        """Offered slots of the pending proposal that are free right now."""
        proposal = self.get_pending_proposal(case_id)
        case = self.store.require_case(case_id)
        return [
            slot
            for slot in proposal.variant.offered_slots
            if self.resolver.check_available(
                slot, case.resource_pool, exclude_case_id=case_id
            ).available
        ]

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, request_id: str) -> NegotiationRequest:
        request = self.store.get_negotiation(request_id)
        if request is None:
            raise NotFoundError("RescheduleRequest", request_id)
        return request

    def list_pending_requests(self, limit: int = 100) -> list[NegotiationRequest]:
        return self.store.list_negotiations(status=NegotiationStatus.PENDING, limit=limit)

    def list_requests(
        self,
        status: Optional[NegotiationStatus] = None,
        limit: int = 100,
    ) -> list[NegotiationRequest]:
        return self.store.list_negotiations(status=status, limit=limit)

    def list_requests_for_case(self, case_id: str) -> list[NegotiationRequest]:
        return self.store.list_negotiations(case_id=case_id)

    def list_requests_for_attorney(self, attorney_id: str) -> list[NegotiationRequest]:
        return self.store.list_negotiations(attorney_id=attorney_id)

    # =========================================================================
    # Shared pipeline
    # =========================================================================

    def _resolve_approved(
        self,
        request_id: str,
        slot: TimeSlot,
        party_kind: RecipientKind,
        party_id: str,
        template_id: str,
        admin_id: Optional[str],
        comments: Optional[str],
        selected_slot: Optional[TimeSlot] = None,
    ) -> ResolutionResult:
        """
        Approve a pending negotiation of either kind in one transaction.

        Any exception rolls everything back: the request stays pending and
        the case, its applications and the outbox are unchanged.
        """
        with self.store.transaction() as conn:
            current = self.store.get_negotiation(request_id, conn=conn)
            if current is None:
                raise NotFoundError("RescheduleRequest", request_id)
            if current.is_terminal():
                raise AlreadyResolvedError(request_id, current.status.value)

            case = self.store.require_case(current.case_id, conn=conn)
            self._require_future(case, slot)
            self.resolver.require_available(
                slot, case.resource_pool, exclude_case_id=case.case_id, conn=conn
            )

            resolved = self.store.resolve_negotiation(
                request_id,
                NegotiationStatus.APPROVED,
                conn,
                admin_id=admin_id,
                admin_comments=comments,
                selected_slot=selected_slot,
            )
            self.store.reschedule_case(case.case_id, slot, conn)

            change = {
                "request_id": request_id,
                "original_slot": current.original_slot.to_dict(),
                "new_slot": slot.to_dict(),
            }
            cascade = self.cascade.purge_and_reopen(
                case.case_id, event_id=request_id, conn=conn, payload=change
            )

            party_record = NotificationRecord.create(
                recipient_kind=party_kind,
                recipient_id=party_id,
                template_id=template_id,
                dedupe_key=_dedupe_key(template_id, request_id, party_id),
                case_id=case.case_id,
                payload={
                    "case_id": case.case_id,
                    "title": case.title,
                    "comments": comments,
                    "jurors_released": len(cascade.affected_juror_ids),
                    **change,
                },
            )
            self.store.enqueue_notification(party_record, conn=conn)
            moved = self.store.require_case(case.case_id, conn=conn)

        logger.info(
            f"Negotiation {request_id} ({current.kind.value}) approved: case {case.case_id} "
            f"moved {current.original_slot} -> {slot}, "
            f"{cascade.deleted_applications} applications purged"
        )
        return ResolutionResult(
            request=resolved,
            case=moved,
            cascade=cascade,
            notifications=(party_record, *cascade.notifications),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _deliver(self, records: Sequence[NotificationRecord]) -> None:
        """Deliver committed outbox rows. Failures stay in the outbox."""
        self.relay.deliver_all(records)

    def _require_open_case(self, case_id: str) -> Case:
        case = self.store.require_case(case_id)
        if case.is_terminal():
            raise ValidationError(f"Case {case_id} is {case.status.value}")
        return case

    def _require_future(self, case: Case, slot: TimeSlot) -> None:
        """Reject a slot whose instant, at the case's offset, is not after now."""
        instant = local_to_utc(slot.local_datetime(), case.timezone_offset_minutes)
        if instant <= self.clock():
            raise ValidationError(
                f"Slot {slot} is in the past for case {case.case_id} "
                f"({to_iso(instant)})"
            )

    def _require_attorney(self, case_id: str, attorney_id: str) -> None:
        case = self.store.require_case(case_id)
        if case.attorney_id != attorney_id:
            raise ValidationError(
                f"Attorney {attorney_id} is not the attorney of record for case {case_id}"
            )

    def _require_no_pending(self, case_id: str) -> None:
        existing = self.store.get_pending_negotiation(case_id)
        if existing is not None:
            raise DuplicatePendingRequestError(case_id, existing.request_id)

    def get_pending_proposal(self, case_id: str) -> NegotiationRequest:
        """
        Raises:
            NotFoundError: No pending admin proposal for the case
        """
        proposal = self.store.get_pending_negotiation(
            case_id, kind=NegotiationKind.ADMIN_INITIATED
        )
        if proposal is None:
            raise NotFoundError("RescheduleProposal", case_id)
        return proposal
