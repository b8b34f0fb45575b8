"""
Docket Service - Main entry point for the trial docket.

This service orchestrates all docket components:
- CaseLifecycleStore (storage and transactions)
- ScheduleConflictResolver (slot availability and calendar blocks)
- JurorApplicationCascade (application purge on reschedule)
- NotificationRelay (outbox delivery through the gateway)
- RescheduleNegotiationService (attorney requests and admin proposals)
- ReminderDispatcher (reminder and war room loop)
- RecoveryManager (crash recovery)

Usage:
    service = DocketService.create(db_path)
    service.start()
    # ... reminder loop runs in background ...
    service.stop()
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from . import config
from .cascade import JurorApplicationCascade
from .conflicts import ScheduleConflictResolver, SlotAvailability
from .entities import (
    ApplicationStatus,
    BlockedSlot,
    Case,
    CaseStatus,
    DispatchRecord,
    JurorApplication,
    NegotiationRequest,
    NegotiationStatus,
    NotificationRecord,
    NotificationStatus,
    TimeSlot,
)
from .errors import ValidationError
from .locks import CaseLockRegistry
from .negotiation import RescheduleNegotiationService, ResolutionResult
from .notifications import NotificationGateway, NotificationRelay, build_gateway
from .persistence import CaseLifecycleStore
from .recovery import RecoveryManager
from .reminders import ReminderDispatcher
from .timezones import ensure_utc, offset_for_state, utc_now, validate_offset
from .window import TrialWindow, TrialWindowCalculator


logger = logging.getLogger(__name__)


class DocketService:
    """
    Main service that coordinates all docket components.

    Provides:
    - Component initialization and wiring
    - Startup with recovery
    - Graceful shutdown
    - API-friendly methods for case and negotiation operations
    """

    def __init__(
        self,
        store: CaseLifecycleStore,
        resolver: ScheduleConflictResolver,
        relay: NotificationRelay,
        negotiation: RescheduleNegotiationService,
        dispatcher: ReminderDispatcher,
        recovery_manager: RecoveryManager,
        calculator: TrialWindowCalculator,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize DocketService with all components.

        Use DocketService.create() for convenient construction.
        """
        self.store = store
        self.resolver = resolver
        self.relay = relay
        self.negotiation = negotiation
        self.dispatcher = dispatcher
        self.recovery_manager = recovery_manager
        self.calculator = calculator
        self._clock = clock

        self._started = False

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        gateway: Optional[NotificationGateway] = None,
        tick_interval: float = config.REMINDER_TICK_INTERVAL_SECONDS,
        max_workers: int = config.REMINDER_MAX_WORKERS,
        war_room_lead_minutes: int = config.WAR_ROOM_LEAD_MINUTES,
        max_attempts: int = config.NOTIFICATION_MAX_ATTEMPTS,
        retry_base_delay: float = config.NOTIFICATION_RETRY_BASE_DELAY,
        retry_max_delay: float = config.NOTIFICATION_RETRY_MAX_DELAY,
        admin_recipients: Optional[Sequence[str]] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "DocketService":
        """
        Create a DocketService with all components wired together.

        Args:
            db_path: Path to SQLite database
            gateway: Delivery transport; built from config if None
            tick_interval: Reminder loop interval in seconds
            max_workers: Cases evaluated in parallel per tick
            war_room_lead_minutes: Minutes before trial the war room opens
            max_attempts: Delivery attempts per notification
            retry_base_delay: Backoff base in seconds
            retry_max_delay: Backoff ceiling in seconds
            admin_recipients: Admins told about new attorney requests;
                config.ADMIN_NOTIFY_IDS if None
            clock: Source of "now" when callers pass none
            sleep: Sleep used between delivery retries

        Returns:
            Configured DocketService
        """
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # Create store
        store = CaseLifecycleStore(db_path)

        # Create delivery
        relay = NotificationRelay(
            store=store,
            gateway=gateway if gateway is not None else build_gateway(),
            max_attempts=max_attempts,
            base_delay=retry_base_delay,
            max_delay=retry_max_delay,
            sleep=sleep,
        )

        # Create scheduling components
        resolver = ScheduleConflictResolver(store)
        calculator = TrialWindowCalculator(war_room_lead_minutes)
        cascade = JurorApplicationCascade(store)

        negotiation = RescheduleNegotiationService(
            store=store,
            resolver=resolver,
            cascade=cascade,
            relay=relay,
            locks=CaseLockRegistry(),
            clock=clock,
            admin_recipients=(
                config.ADMIN_NOTIFY_IDS if admin_recipients is None else admin_recipients
            ),
        )

        dispatcher = ReminderDispatcher(
            store=store,
            relay=relay,
            calculator=calculator,
            tick_interval=tick_interval,
            max_workers=max_workers,
            clock=clock,
        )

        recovery_manager = RecoveryManager(
            store=store,
            relay=relay,
            calculator=calculator,
            clock=clock,
        )

        return cls(
            store=store,
            resolver=resolver,
            relay=relay,
            negotiation=negotiation,
            dispatcher=dispatcher,
            recovery_manager=recovery_manager,
            calculator=calculator,
            clock=clock,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_recovery: bool = True, blocking: bool = False) -> dict:
        """
        Start the reminder loop.

        Args:
            run_recovery: Whether to run crash recovery first
            blocking: Whether to block on the reminder loop

        Returns:
            Recovery statistics if recovery was run
        """
        if self._started:
            raise RuntimeError("Docket already started")

        logger.info("Starting docket service...")

        recovery_stats = {}
        if run_recovery:
            recovery_stats = self.recovery_manager.recover_on_startup()

        self._started = True
        self.dispatcher.start(blocking=blocking)

        logger.info("Docket service started")
        return recovery_stats

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the reminder loop gracefully.

        Args:
            timeout: Maximum wait for an in-flight tick
        """
        if not self._started:
            return

        logger.info("Stopping docket service...")
        self.dispatcher.stop(timeout=timeout)
        self._started = False
        logger.info("Docket service stopped")

    @property
    def is_running(self) -> bool:
        """Check if the reminder loop is running."""
        return self._started and self.dispatcher.is_running()

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "reminders": self.dispatcher.get_status(),
            "notifications": self.store.count_notifications_by_status(),
            "pending_requests": len(self.negotiation.list_pending_requests()),
        }

    # =========================================================================
    # Cases
    # =========================================================================

    def file_case(
        self,
        title: str,
        attorney_id: str,
        resource_pool: str,
        slot: TimeSlot,
        timezone_offset_minutes: Optional[int] = None,
        state: Optional[str] = None,
        status: CaseStatus = CaseStatus.OPEN_FOR_APPLICATIONS,
    ) -> Case:
        """
        File a case at its initial slot.

        The offset defaults to the standard offset of ``state`` when given,
        else UTC.

        Raises:
            ValidationError: Missing fields, bad offset, or a terminal status
            SlotUnavailableError: Slot is taken or blocked in the pool; nothing
                is saved
        """
        if not title or not title.strip():
            raise ValidationError("Case title is required")
        if not attorney_id:
            raise ValidationError("attorney_id is required")
        if not resource_pool:
            raise ValidationError("resource_pool is required")
        if status.is_terminal:
            raise ValidationError(f"A case cannot be filed as {status.value}")

        if timezone_offset_minutes is None:
            timezone_offset_minutes = offset_for_state(state)
        validate_offset(timezone_offset_minutes)

        case = Case.create(
            title=title.strip(),
            attorney_id=attorney_id,
            resource_pool=resource_pool,
            slot=slot,
            timezone_offset_minutes=timezone_offset_minutes,
            status=status,
        )
        with self.store.transaction() as conn:
            self.resolver.require_available(slot, resource_pool, conn=conn)
            self.store.create_case(case, conn=conn)

        logger.info(f"Case {case.case_id} filed in {resource_pool} for {slot}")
        return case

    def get_case(self, case_id: str) -> Case:
        return self.store.require_case(case_id)

    def add_juror_application(
        self,
        case_id: str,
        juror_id: str,
        status: ApplicationStatus = ApplicationStatus.PENDING,
    ) -> JurorApplication:
        """
        Record a juror's application to a case.

        Raises:
            NotFoundError: Case does not exist
            ValidationError: Case is closed or the juror already applied
        """
        case = self.store.require_case(case_id)
        if case.is_terminal():
            raise ValidationError(f"Case {case_id} is {case.status.value}")

        application = self.store.create_application(
            JurorApplication.create(case_id=case_id, juror_id=juror_id, status=status)
        )
        logger.debug(f"Juror {juror_id} applied to case {case_id} ({status.value})")
        return application

    def list_applications(self, case_id: str) -> list[JurorApplication]:
        self.store.require_case(case_id)
        return self.store.list_applications(case_id)

    def evaluate_case_window(
        self,
        case_id: str,
        now_utc: Optional[datetime] = None,
    ) -> TrialWindow:
        """Where the case sits relative to its trial. Read-only."""
        case = self.store.require_case(case_id)
        now = ensure_utc(now_utc) if now_utc is not None else self._clock()
        return self.calculator.evaluate(now, case.trial_instant_utc)

    # =========================================================================
    # Calendar
    # =========================================================================

    def check_slot(self, resource_pool: str, slot: TimeSlot) -> SlotAvailability:
        return self.resolver.check_available(slot, resource_pool)

    def available_slots(
        self,
        resource_pool: str,
        start_date: str,
        end_date: str,
    ) -> list[TimeSlot]:
        return self.resolver.available_slots(resource_pool, start_date, end_date)

    def block_slot(
        self,
        resource_pool: str,
        slot: TimeSlot,
        reason: Optional[str] = None,
        blocked_by: Optional[str] = None,
    ) -> BlockedSlot:
        return self.resolver.block(resource_pool, slot, reason=reason, blocked_by=blocked_by)

    def unblock_slot(self, block_id: str) -> BlockedSlot:
        return self.resolver.unblock(block_id)

    def list_blocked_slots(
        self,
        resource_pool: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[BlockedSlot]:
        return self.resolver.list_blocks(resource_pool, start_date, end_date)

    # =========================================================================
    # Negotiation
    # =========================================================================

    def create_reschedule_request(
        self,
        case_id: str,
        attorney_id: str,
        new_slot: TimeSlot,
        reason: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> NegotiationRequest:
        return self.negotiation.create_request(case_id, attorney_id, new_slot, reason, comments)

    def approve_reschedule(
        self,
        request_id: str,
        admin_id: str,
        comments: Optional[str] = None,
    ) -> ResolutionResult:
        return self.negotiation.approve(request_id, admin_id, comments)

    def reject_reschedule(
        self,
        request_id: str,
        admin_id: str,
        comments: Optional[str],
    ) -> NegotiationRequest:
        return self.negotiation.reject(request_id, admin_id, comments)

    def propose_alternate_slots(
        self,
        case_id: str,
        admin_id: str,
        slots: Sequence[TimeSlot],
    ) -> NegotiationRequest:
        return self.negotiation.propose_slots(case_id, admin_id, slots)

    def confirm_proposed_slot(
        self,
        case_id: str,
        chosen_slot: TimeSlot,
        attorney_id: Optional[str] = None,
    ) -> ResolutionResult:
        return self.negotiation.confirm_slot(case_id, chosen_slot, attorney_id)

    def decline_proposal(
        self,
        case_id: str,
        attorney_id: str,
        reason: Optional[str],
    ) -> NegotiationRequest:
        return self.negotiation.decline_proposal(case_id, attorney_id, reason)

    def selectable_slots(self, case_id: str) -> list[TimeSlot]:
        return self.negotiation.selectable_slots(case_id)

    def get_pending_proposal(self, case_id: str) -> NegotiationRequest:
        return self.negotiation.get_pending_proposal(case_id)

    def get_request(self, request_id: str) -> NegotiationRequest:
        return self.negotiation.get_request(request_id)

    def list_requests(
        self,
        status: Optional[NegotiationStatus] = None,
        case_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[NegotiationRequest]:
        if case_id is not None:
            self.store.require_case(case_id)
            requests = self.negotiation.list_requests_for_case(case_id)
            if status is not None:
                requests = [r for r in requests if r.status == status]
            return requests[:limit]
        return self.negotiation.list_requests(status=status, limit=limit)

    # =========================================================================
    # Reminders / Notifications
    # =========================================================================

    def tick(self, now_utc: Optional[datetime] = None) -> list[DispatchRecord]:
        return self.dispatcher.tick(now_utc)

    def list_notifications(
        self,
        case_id: Optional[str] = None,
        status: Optional[NotificationStatus] = None,
    ) -> list[NotificationRecord]:
        return self.store.list_notifications(case_id=case_id, status=status)
