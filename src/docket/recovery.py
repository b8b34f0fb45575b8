"""
Recovery Manager for the docket.

Runs once at startup, before the reminder loop:
1. Outbox rows left SENDING were mid-delivery when the process died; the
   gateway may or may not have accepted them. They are marked ABANDONED and
   never re-sent (at-most-once).
2. Outbox rows still PENDING were committed but never attempted; they are
   delivered now.
3. Active cases whose war room should already be open are reported; the
   first reminder tick opens them.

Approvals need no repair: they commit in a single SQLite transaction, so a
crash leaves either the whole reschedule or none of it.

Recovery is idempotent: running it twice produces the same end state.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from .notifications import NotificationRelay
from .persistence import CaseLifecycleStore
from .timezones import utc_now
from .window import TrialWindowCalculator


logger = logging.getLogger(__name__)


class RecoveryManager:
    """Handles crash recovery and startup cleanup."""

    def __init__(
        self,
        store: CaseLifecycleStore,
        relay: NotificationRelay,
        calculator: Optional[TrialWindowCalculator] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.relay = relay
        self.calculator = calculator or TrialWindowCalculator()
        self._clock = clock

    def recover_on_startup(self) -> dict:
        """
        Perform full recovery on startup.

        Returns:
            Recovery statistics
        """
        stats = {
            "notifications_abandoned": 0,
            "notifications_delivered": 0,
            "war_rooms_overdue": 0,
            "errors": [],
        }

        logger.info("Starting crash recovery...")

        try:
            stats["notifications_abandoned"] = self.store.abandon_sending_notifications()
        except Exception as e:
            logger.error(f"Error abandoning in-flight notifications: {e}")
            stats["errors"].append(f"Abandon: {e}")

        try:
            stats["notifications_delivered"] = self.relay.deliver_pending()
        except Exception as e:
            logger.error(f"Error relaying pending notifications: {e}")
            stats["errors"].append(f"Relay: {e}")

        try:
            stats["war_rooms_overdue"] = len(self._overdue_war_rooms())
        except Exception as e:
            logger.error(f"Error checking war rooms: {e}")
            stats["errors"].append(f"War rooms: {e}")

        logger.info(
            f"Recovery complete: "
            f"{stats['notifications_abandoned']} notifications abandoned, "
            f"{stats['notifications_delivered']} pending notifications delivered, "
            f"{stats['war_rooms_overdue']} war rooms awaiting the next tick"
        )

        return stats

    def _overdue_war_rooms(self) -> list[str]:
        """Case IDs whose war room window is open but not yet marked opened."""
        now = self._clock()
        overdue = []
        for case in self.store.list_active_cases():
            if case.war_room_opened:
                continue
            if self.calculator.evaluate(now, case.trial_instant_utc).war_room_open:
                logger.info(f"Case {case.case_id}: war room should be open")
                overdue.append(case.case_id)
        return overdue
