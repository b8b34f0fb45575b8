"""
Reminder Dispatcher Tests.

- Each threshold fires exactly once per schedule, even across repeated ticks
- Flags are monotone and only an approved reschedule clears them
- A failed delivery never re-opens a flag
- The war room opens once, moving an awaiting_trial case to join_trial
- Loop control: start/stop, overlapping ticks skipped
"""

import time
from datetime import timedelta

import pytest

from src.docket import (
    ApplicationStatus,
    CaseStatus,
    NotificationStatus,
    ReminderDispatcher,
    ReminderLoopState,
    ReminderThreshold,
    ValidationError,
)
from src.docket.notifications import TEMPLATE_TRIAL_REMINDER, TEMPLATE_WAR_ROOM_OPEN

from .conftest import ADMIN, ATTORNEY, TRIAL_INSTANT, slot


def at(**kwargs):
    """Instant ``kwargs`` before the fixture trial instant."""
    return TRIAL_INSTANT - timedelta(**kwargs)


# =============================================================================
# Scenarios
# =============================================================================


class TestTrialScenarios:
    """End-to-end timelines around one case."""

    def test_t_minus_65m_quiet_then_war_room_at_t_minus_55m(self, service, create_case):
        """
        Setup: Case at T, every reminder already sent by earlier ticks
        Action: tick at T-65m, then evaluate at T-55m
        Assertion: no dispatch and war room closed, then war room open
        """
        case = create_case()
        for days in (4, 3, 2, 1):
            assert len(service.tick(at(days=days))) == 1

        records = service.tick(at(minutes=65))
        assert records == []
        assert service.evaluate_case_window(case.case_id, at(minutes=65)).war_room_open is False

        window = service.evaluate_case_window(case.case_id, at(minutes=55))
        assert window.war_room_open is True
        assert window.minutes_until_trial == 55

    def test_four_day_reminder_fires_exactly_once(self, service, create_case, gateway):
        """
        Setup: Case at T
        Action: tick twice at T-4d+1m
        Assertion: one 4d reminder, second tick dispatches nothing
        """
        case = create_case()
        now = at(days=4) + timedelta(minutes=1)

        first = service.tick(now)
        second = service.tick(now)

        assert [r.threshold for r in first] == [ReminderThreshold.FOUR_DAYS]
        assert second == []
        assert gateway.sent_to(TEMPLATE_TRIAL_REMINDER) == [f"attorney:{ATTORNEY}"]
        assert service.get_case(case.case_id).reminders.sent_4d is True

    def test_nothing_before_four_days(self, service, create_case):
        create_case()
        assert service.tick(at(days=4, minutes=1)) == []

    def test_close_filing_fires_every_due_threshold(self, service, create_case):
        """A case filed inside the 1-day window gets all four reminders once."""
        create_case()
        records = service.tick(at(hours=12))

        assert [r.threshold for r in records] == [
            ReminderThreshold.FOUR_DAYS,
            ReminderThreshold.THREE_DAYS,
            ReminderThreshold.TWO_DAYS,
            ReminderThreshold.ONE_DAY,
        ]
        assert service.tick(at(hours=11)) == []

    def test_naive_now_rejected(self, service):
        with pytest.raises(ValidationError):
            service.tick(TRIAL_INSTANT.replace(tzinfo=None))


# =============================================================================
# Recipients
# =============================================================================


class TestRecipients:
    def test_attorney_and_approved_jurors(self, service, create_case, add_jurors, gateway):
        case = create_case()
        add_jurors(case.case_id, ["juror-1", "juror-2"])
        add_jurors(case.case_id, ["juror-3"], status=ApplicationStatus.PENDING)

        records = service.tick(at(days=4))

        assert sorted(f"{r.recipient_kind.value}:{r.recipient_id}" for r in records) == [
            f"attorney:{ATTORNEY}",
            "juror:juror-1",
            "juror:juror-2",
        ]
        assert all(r.delivered for r in records)
        assert len(gateway.sent) == 3

    def test_payload_carries_threshold(self, service, create_case, gateway):
        case = create_case()
        service.tick(at(days=3))

        payload = gateway.sent[0]["payload"]
        assert payload["case_id"] == case.case_id
        assert payload["threshold"] in ("4d", "3d")
        assert payload["trial_instant_utc"] == "2026-03-10T15:00:00Z"


# =============================================================================
# Flag monotonicity
# =============================================================================


class TestFlagMonotonicity:
    def test_flags_only_set(self, service, create_case):
        case = create_case()
        service.tick(at(days=4))
        service.tick(at(days=3))

        reminders = service.get_case(case.case_id).reminders
        assert reminders.sent_4d and reminders.sent_3d
        assert not reminders.sent_2d and not reminders.sent_1d

        # Going back in time never clears anything
        service.tick(at(days=5))
        assert service.get_case(case.case_id).reminders == reminders

    def test_approval_resets_flags(self, service, create_case, gateway):
        """
        Setup: 4d reminder sent, then reschedule 10 days later approved
        Assertion: flags cleared, version bumped, 4d fires again for the new date
        """
        case = create_case()
        service.tick(at(days=4))

        request = service.create_reschedule_request(
            case.case_id, ATTORNEY, slot("2026-03-20", "15:00"), reason="Conflict"
        )
        result = service.approve_reschedule(request.request_id, ADMIN)

        moved = result.case
        assert moved.reminders.as_dict() == {"4d": False, "3d": False, "2d": False, "1d": False}
        assert moved.schedule_version == 1
        assert moved.war_room_opened is False

        # Old timeline: nothing due any more
        assert service.tick(at(days=3)) == []

        new_trial = TRIAL_INSTANT + timedelta(days=10)
        records = service.tick(new_trial - timedelta(days=4))
        assert [r.threshold for r in records] == [ReminderThreshold.FOUR_DAYS]
        assert len(gateway.sent_to(TEMPLATE_TRIAL_REMINDER)) == 2

    def test_stale_version_loses_cas(self, service, store, create_case):
        """A tick that read the case before a reschedule cannot claim its flags."""
        case = create_case()
        with store.transaction() as conn:
            store.reschedule_case(case.case_id, slot("2026-03-20", "15:00"), conn)

        assert store.claim_reminder(
            case.case_id, ReminderThreshold.FOUR_DAYS, schedule_version=0
        ) is False
        assert store.claim_reminder(
            case.case_id, ReminderThreshold.FOUR_DAYS, schedule_version=1
        ) is True
        assert store.claim_reminder(
            case.case_id, ReminderThreshold.FOUR_DAYS, schedule_version=1
        ) is False


# =============================================================================
# Delivery failures
# =============================================================================


class TestDeliveryFailure:
    def test_failed_delivery_keeps_flag(self, service, store, create_case, gateway, sleeps):
        """
        Setup: Gateway refuses everything
        Action: tick at T-4d twice
        Assertion: one record (undelivered), flag set, row FAILED, no resend
        """
        gateway.refuse = True
        case = create_case()

        records = service.tick(at(days=4))
        assert len(records) == 1
        assert records[0].delivered is False
        assert service.get_case(case.case_id).reminders.sent_4d is True

        row = store.get_notification(records[0].notification_id)
        assert row.status == NotificationStatus.FAILED
        assert row.attempts == 3
        assert sleeps == [1.0, 2.0]

        assert service.tick(at(days=4)) == []
        assert gateway.calls == 3

    def test_transient_failure_recovers_within_budget(self, service, store, create_case, gateway):
        gateway.fail_times = 2
        create_case()

        records = service.tick(at(days=4))

        assert records[0].delivered is True
        assert store.get_notification(records[0].notification_id).attempts == 3


# =============================================================================
# War room
# =============================================================================


class TestWarRoom:
    def test_opens_once(self, service, create_case, add_jurors, gateway):
        case = create_case(status=CaseStatus.AWAITING_TRIAL)
        add_jurors(case.case_id, ["juror-1"])
        for days in (4, 3, 2, 1):
            service.tick(at(days=days))

        records = service.tick(at(minutes=30))
        assert len(records) == 2
        assert {r.template_id for r in records} == {TEMPLATE_WAR_ROOM_OPEN}
        assert all(r.threshold is None for r in records)

        opened = service.get_case(case.case_id)
        assert opened.war_room_opened is True
        assert opened.status == CaseStatus.JOIN_TRIAL

        assert service.tick(at(minutes=10)) == []
        assert len(gateway.sent_to(TEMPLATE_WAR_ROOM_OPEN)) == 2

    def test_not_opened_at_sixty_one_minutes(self, service, create_case):
        case = create_case()
        for days in (4, 3, 2, 1):
            service.tick(at(days=days))

        assert service.tick(at(minutes=61)) == []
        assert service.get_case(case.case_id).war_room_opened is False

        records = service.tick(at(minutes=60))
        assert [r.template_id for r in records] == [TEMPLATE_WAR_ROOM_OPEN]

    def test_open_case_keeps_status_when_war_room_opens(self, service, create_case):
        case = create_case()
        for days in (4, 3, 2, 1):
            service.tick(at(days=days))

        records = service.tick(at(minutes=30))
        assert [r.template_id for r in records] == [TEMPLATE_WAR_ROOM_OPEN]

        opened = service.get_case(case.case_id)
        assert opened.war_room_opened is True
        assert opened.status == CaseStatus.OPEN_FOR_APPLICATIONS


# =============================================================================
# Case selection
# =============================================================================


class TestCaseSelection:
    def test_terminal_cases_ignored(self, service, store, create_case):
        case = create_case()
        store.update_case_status(case.case_id, CaseStatus.CANCELLED)
        assert service.tick(at(days=1)) == []

    def test_started_trials_ignored(self, service, create_case):
        create_case()
        assert service.tick(TRIAL_INSTANT + timedelta(minutes=1)) == []

    def test_parallel_evaluation(self, service, store, create_case):
        for i in range(5):
            create_case(resource_pool=f"pool-{i}", attorney_id=f"attorney-{i}")

        dispatcher = ReminderDispatcher(store, service.relay, max_workers=4)
        records = dispatcher.tick(at(days=4))

        assert sorted(r.recipient_id for r in records) == [f"attorney-{i}" for i in range(5)]
        assert dispatcher.tick(at(days=4)) == []


# =============================================================================
# Loop control
# =============================================================================


class TestLoopControl:
    def test_overlapping_tick_skipped(self, service, create_case):
        create_case()
        dispatcher = service.dispatcher

        dispatcher._tick_lock.acquire()
        try:
            assert dispatcher.tick(at(days=4)) == []
        finally:
            dispatcher._tick_lock.release()

        assert dispatcher.get_status()["ticks_skipped"] == 1
        assert len(dispatcher.tick(at(days=4))) == 1

    def test_start_and_stop(self, service):
        service.start(run_recovery=False)
        assert service.is_running
        assert service.dispatcher.state == ReminderLoopState.RUNNING

        deadline = time.time() + 5
        while service.dispatcher.get_status()["ticks_completed"] == 0 and time.time() < deadline:
            time.sleep(0.01)

        service.stop(timeout=5)
        assert not service.is_running
        assert service.dispatcher.state == ReminderLoopState.STOPPED
        assert service.dispatcher.get_status()["ticks_completed"] >= 1

    def test_double_start_rejected(self, service):
        service.start(run_recovery=False)
        with pytest.raises(RuntimeError):
            service.start(run_recovery=False)
