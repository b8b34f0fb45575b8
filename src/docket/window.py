"""
Trial window arithmetic.

Pure functions of (now_utc, trial_instant_utc). No I/O, no clock reads.

minutes_until_trial is rounded away from zero, so integer comparisons agree
with comparisons of the exact instants:

    30s before trial  -> 1
    exactly at trial  -> 0
    30s after trial   -> -1
    60m30s before     -> 61

With that rounding the war room is open iff 0 <= minutes <= 60, and a
reminder threshold is due iff 0 <= minutes <= threshold.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from .entities import REMINDER_THRESHOLDS, ReminderState, ReminderThreshold
from .timezones import ensure_utc


DEFAULT_WAR_ROOM_LEAD_MINUTES = 60


@dataclass(frozen=True)
class TrialWindow:
    """Snapshot of where a case sits relative to its trial instant."""

    minutes_until_trial: int
    war_room_open: bool

    @property
    def trial_started(self) -> bool:
        return self.minutes_until_trial < 0


def minutes_until_trial(now_utc: datetime, trial_instant_utc: datetime) -> int:
    """
    Whole minutes from now until the trial instant.

    Raises:
        ValidationError: If either datetime is naive
    """
    seconds = (ensure_utc(trial_instant_utc) - ensure_utc(now_utc)).total_seconds()
    if seconds >= 0:
        return math.ceil(seconds / 60)
    return math.floor(seconds / 60)


def is_war_room_open(
    minutes_until: int,
    lead_minutes: int = DEFAULT_WAR_ROOM_LEAD_MINUTES,
) -> bool:
    """Closed-closed interval [T-lead, T]."""
    return 0 <= minutes_until <= lead_minutes


def due_thresholds(minutes_until: int, reminders: ReminderState) -> list[ReminderThreshold]:
    """
    Thresholds that are inside their window and not yet sent.

    A threshold stays due until its flag is set, so several may be due at once
    when a case is filed or rescheduled close to its trial.
    """
    if minutes_until < 0:
        return []
    return [
        t
        for t in REMINDER_THRESHOLDS
        if minutes_until <= t.minutes and not reminders.is_sent(t)
    ]


class TrialWindowCalculator:
    """Bundles the window functions with a configured war room lead time."""

    def __init__(self, war_room_lead_minutes: int = DEFAULT_WAR_ROOM_LEAD_MINUTES):
        self.war_room_lead_minutes = war_room_lead_minutes

    def evaluate(self, now_utc: datetime, trial_instant_utc: datetime) -> TrialWindow:
        minutes_until = minutes_until_trial(now_utc, trial_instant_utc)
        return TrialWindow(
            minutes_until_trial=minutes_until,
            war_room_open=is_war_room_open(minutes_until, self.war_room_lead_minutes),
        )

    def reminder_thresholds_crossed(
        self,
        now_utc: datetime,
        trial_instant_utc: datetime,
        reminders: ReminderState,
    ) -> list[ReminderThreshold]:
        return due_thresholds(minutes_until_trial(now_utc, trial_instant_utc), reminders)
