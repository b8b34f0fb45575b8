"""
Reminder Dispatcher.

Runs the periodic evaluation of every scheduled case:
- Sends the 4d/3d/2d/1d trial reminders, each exactly once per schedule
- Opens the war room when the trial is within the lead window

Exactly-once comes from the store, not from this process: a reminder is
handed to the relay only after this tick won the flag CAS
(``UPDATE ... WHERE flag = 0``). A lost race sends nothing. A failed
delivery never clears the flag.

Loop control mirrors a background dispatcher: ``start()`` spawns a daemon
thread that ticks on a fixed interval until ``stop()``. Ticks never overlap;
a tick that finds the previous one still running is skipped.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from . import config
from .entities import (
    ApplicationStatus,
    Case,
    DispatchRecord,
    NotificationRecord,
    RecipientKind,
    ReminderThreshold,
)
from .notifications import (
    TEMPLATE_TRIAL_REMINDER,
    TEMPLATE_WAR_ROOM_OPEN,
    NotificationRelay,
    Recipient,
)
from .persistence import CaseLifecycleStore
from .timezones import ensure_utc, now_iso, to_iso, utc_now
from .window import TrialWindow, TrialWindowCalculator


logger = logging.getLogger(__name__)


class ReminderLoopState(str, Enum):
    """Reminder loop lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class ReminderDispatcher:
    """
    Evaluates cases against the clock and dispatches reminders.

    Key behaviors:
    1. List non-terminal cases
    2. For each case (in parallel across cases):
       a. Skip if the trial has started
       b. For each due threshold: CAS the flag, then deliver
       c. If the war room is open: CAS the opened flag, then deliver
    3. Return one DispatchRecord per handed-off notification
    """

    def __init__(
        self,
        store: CaseLifecycleStore,
        relay: NotificationRelay,
        calculator: Optional[TrialWindowCalculator] = None,
        tick_interval: float = config.REMINDER_TICK_INTERVAL_SECONDS,
        max_workers: int = config.REMINDER_MAX_WORKERS,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize ReminderDispatcher.

        Args:
            store: Case store
            relay: Delivers committed reminders
            calculator: Window arithmetic (default lead: 60 minutes)
            tick_interval: Seconds between ticks in the background loop
            max_workers: Cases evaluated in parallel per tick
            clock: Source of "now" for the background loop
        """
        self.store = store
        self.relay = relay
        self.calculator = calculator or TrialWindowCalculator(config.WAR_ROOM_LEAD_MINUTES)
        self.tick_interval = tick_interval
        self.max_workers = max(1, max_workers)
        self._clock = clock

        self._state = ReminderLoopState.STOPPED
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()

        self._ticks_completed = 0
        self._ticks_skipped = 0
        self._last_tick_at: Optional[str] = None
        self._last_dispatch_count = 0

    @property
    def state(self) -> ReminderLoopState:
        """Get current loop state."""
        return self._state

    def is_running(self) -> bool:
        return self._state == ReminderLoopState.RUNNING

    # =========================================================================
    # Single Tick
    # =========================================================================

    def tick(self, now_utc: Optional[datetime] = None) -> list[DispatchRecord]:
        """
        Evaluate every active case once.

        Args:
            now_utc: Aware evaluation instant; the clock is read if None

        Returns:
            DispatchRecords for every notification handed to the relay.
            Empty if another tick was already running.

        Raises:
            ValidationError: If ``now_utc`` is naive
        """
        now = ensure_utc(now_utc) if now_utc is not None else ensure_utc(self._clock())

        if not self._tick_lock.acquire(blocking=False):
            self._ticks_skipped += 1
            logger.warning("Previous reminder tick still running, skipping this one")
            return []

        try:
            cases = self.store.list_active_cases()
            if self.max_workers > 1 and len(cases) > 1:
                with ThreadPoolExecutor(
                    max_workers=min(self.max_workers, len(cases)),
                    thread_name_prefix="reminder-tick",
                ) as pool:
                    per_case = list(pool.map(lambda c: self._evaluate_case(c, now), cases))
            else:
                per_case = [self._evaluate_case(case, now) for case in cases]

            records = [record for batch in per_case for record in batch]

            self._ticks_completed += 1
            self._last_tick_at = to_iso(now)
            self._last_dispatch_count = len(records)

            if records:
                logger.info(
                    f"Reminder tick at {to_iso(now)}: {len(cases)} cases, "
                    f"{len(records)} notifications dispatched"
                )
            else:
                logger.debug(f"Reminder tick at {to_iso(now)}: {len(cases)} cases, nothing due")
            return records

        finally:
            self._tick_lock.release()

    def _evaluate_case(self, case: Case, now: datetime) -> list[DispatchRecord]:
        """Evaluate one case. Errors are contained to the case."""
        try:
            window = self.calculator.evaluate(now, case.trial_instant_utc)
            if window.trial_started:
                return []

            recipients = self._recipients(case)
            records: list[DispatchRecord] = []

            due = self.calculator.reminder_thresholds_crossed(
                now, case.trial_instant_utc, case.reminders
            )
            for threshold in due:
                records.extend(self._send_reminder(case, threshold, window, recipients))

            if window.war_room_open and not case.war_room_opened:
                records.extend(self._open_war_room(case, window, recipients))

            return records

        except Exception as e:
            logger.error(f"Error evaluating case {case.case_id}: {e}", exc_info=True)
            return []

    def _recipients(self, case: Case) -> list[Recipient]:
        """The attorney plus every approved juror."""
        jurors = self.store.list_applications(case.case_id, status=ApplicationStatus.APPROVED)
        return [Recipient(RecipientKind.ATTORNEY, case.attorney_id)] + [
            Recipient(RecipientKind.JUROR, a.juror_id) for a in jurors
        ]

    def _build(
        self,
        case: Case,
        template_id: str,
        event: str,
        recipients: list[Recipient],
        payload: dict,
    ) -> list[NotificationRecord]:
        return [
            NotificationRecord.create(
                recipient_kind=r.kind,
                recipient_id=r.recipient_id,
                template_id=template_id,
                dedupe_key=(
                    f"{template_id}:{case.case_id}:v{case.schedule_version}:"
                    f"{event}:{r.kind.value}:{r.recipient_id}"
                ),
                case_id=case.case_id,
                payload=payload,
            )
            for r in recipients
        ]

    def _payload(self, case: Case, window: TrialWindow) -> dict:
        return {
            "case_id": case.case_id,
            "title": case.title,
            "scheduled_date": case.slot.date,
            "scheduled_time": case.slot.time,
            "trial_instant_utc": to_iso(case.trial_instant_utc),
            "minutes_until_trial": window.minutes_until_trial,
        }

    def _send_reminder(
        self,
        case: Case,
        threshold: ReminderThreshold,
        window: TrialWindow,
        recipients: list[Recipient],
    ) -> list[DispatchRecord]:
        payload = {**self._payload(case, window), "threshold": threshold.value}
        notifications = self._build(
            case, TEMPLATE_TRIAL_REMINDER, threshold.value, recipients, payload
        )

        if not self.store.claim_reminder(
            case.case_id,
            threshold,
            notifications,
            schedule_version=case.schedule_version,
        ):
            logger.debug(f"Reminder {threshold.value} for case {case.case_id} already claimed")
            return []

        logger.info(
            f"Sending {threshold.value} reminder for case {case.case_id} "
            f"to {len(notifications)} recipients"
        )
        return self._dispatch(case, notifications, threshold)

    def _open_war_room(
        self,
        case: Case,
        window: TrialWindow,
        recipients: list[Recipient],
    ) -> list[DispatchRecord]:
        notifications = self._build(
            case, TEMPLATE_WAR_ROOM_OPEN, "open", recipients, self._payload(case, window)
        )

        if not self.store.claim_war_room_open(
            case.case_id,
            notifications,
            schedule_version=case.schedule_version,
        ):
            logger.debug(f"War room for case {case.case_id} already opened")
            return []

        logger.info(
            f"War room open for case {case.case_id} "
            f"({window.minutes_until_trial} minutes to trial)"
        )
        return self._dispatch(case, notifications, None)

    def _dispatch(
        self,
        case: Case,
        notifications: list[NotificationRecord],
        threshold: Optional[ReminderThreshold],
    ) -> list[DispatchRecord]:
        return [
            DispatchRecord(
                notification_id=record.notification_id,
                case_id=case.case_id,
                recipient_kind=record.recipient_kind,
                recipient_id=record.recipient_id,
                template_id=record.template_id,
                threshold=threshold,
                delivered=delivered,
                dispatched_at=now_iso(),
            )
            for record, delivered in self.relay.deliver_all(notifications)
        ]

    # =========================================================================
    # Loop
    # =========================================================================

    def start(self, blocking: bool = False) -> None:
        """
        Start the reminder loop.

        Args:
            blocking: If True, run in current thread. If False, run in background.
        """
        if self._state != ReminderLoopState.STOPPED:
            raise RuntimeError(f"Cannot start reminder loop in {self._state.value} state")

        self._stop_event.clear()
        self._state = ReminderLoopState.RUNNING
        logger.info(f"Reminder loop starting (interval={self.tick_interval}s)")

        if blocking:
            self._loop()
        else:
            self._thread = threading.Thread(
                target=self._loop, name="reminder-loop", daemon=True
            )
            self._thread.start()

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the reminder loop, letting an in-flight tick finish.

        Args:
            timeout: Maximum seconds to wait for the loop thread
        """
        if self._state == ReminderLoopState.STOPPED:
            return

        logger.info("Stopping reminder loop...")
        self._state = ReminderLoopState.STOPPING
        self._stop_event.set()

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Reminder loop thread did not stop within timeout")
            self._thread = None

        self._state = ReminderLoopState.STOPPED
        logger.info("Reminder loop stopped")

    def _loop(self) -> None:
        """Main reminder loop."""
        logger.info("Reminder loop started")

        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in reminder loop: {e}", exc_info=True)
            self._stop_event.wait(self.tick_interval)

        self._state = ReminderLoopState.STOPPED
        logger.info("Reminder loop ended")

    def get_status(self) -> dict:
        return {
            "state": self._state.value,
            "tick_interval_seconds": self.tick_interval,
            "max_workers": self.max_workers,
            "war_room_lead_minutes": self.calculator.war_room_lead_minutes,
            "ticks_completed": self._ticks_completed,
            "ticks_skipped": self._ticks_skipped,
            "last_tick_at": self._last_tick_at,
            "last_dispatch_count": self._last_dispatch_count,
        }
