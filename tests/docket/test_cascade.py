"""
Juror Application Cascade Tests.

- Every application for the case is deleted, whatever its status
- The case goes back to open_for_applications
- Re-running for the same event neither fails nor notifies twice
"""

import pytest

from src.docket import (
    ApplicationStatus,
    CaseStatus,
    JurorApplicationCascade,
    NotFoundError,
)
from src.docket.cascade import juror_dedupe_key


@pytest.fixture
def cascade(store) -> JurorApplicationCascade:
    return JurorApplicationCascade(store)


class TestPurgeAndReopen:
    def test_purges_all_statuses(self, cascade, store, create_case, add_jurors):
        case = create_case(status=CaseStatus.AWAITING_TRIAL)
        add_jurors(case.case_id, ["juror-1", "juror-2"])
        add_jurors(case.case_id, ["juror-3"], status=ApplicationStatus.PENDING)
        add_jurors(case.case_id, ["juror-4"], status=ApplicationStatus.REJECTED)

        result = cascade.purge_and_reopen(case.case_id, event_id="evt-1")

        assert result.deleted_applications == 4
        assert result.affected_juror_ids == ("juror-1", "juror-2", "juror-3", "juror-4")
        assert result.notifications_enqueued == 4
        assert store.list_applications(case.case_id) == []
        assert store.get_case(case.case_id).status == CaseStatus.OPEN_FOR_APPLICATIONS

    def test_idempotent_per_event(self, cascade, store, create_case, add_jurors):
        """
        Setup: Cascade already ran for evt-1
        Action: Run it again
        Assertion: nothing deleted, nothing new enqueued, no error
        """
        case = create_case()
        add_jurors(case.case_id, ["juror-1"])
        cascade.purge_and_reopen(case.case_id, event_id="evt-1")

        again = cascade.purge_and_reopen(case.case_id, event_id="evt-1")

        assert again.deleted_applications == 0
        assert again.affected_juror_ids == ()
        assert again.notifications_enqueued == 0
        assert len(store.list_notifications(case_id=case.case_id)) == 1

    def test_dedupe_key_blocks_replayed_notification(self, cascade, store, create_case, add_jurors):
        """A juror who re-applies before a replay of the same event is not re-notified."""
        case = create_case()
        add_jurors(case.case_id, ["juror-1"])
        cascade.purge_and_reopen(case.case_id, event_id="evt-1")
        add_jurors(case.case_id, ["juror-1"])

        again = cascade.purge_and_reopen(case.case_id, event_id="evt-1")

        assert again.deleted_applications == 1
        assert again.notifications_enqueued == 0
        assert store.get_notification_by_key(
            juror_dedupe_key(case.case_id, "evt-1", "juror-1")
        ) is not None

    def test_terminal_case_not_reopened(self, cascade, store, create_case):
        case = create_case()
        store.update_case_status(case.case_id, CaseStatus.COMPLETED)

        cascade.purge_and_reopen(case.case_id, event_id="evt-1")
        assert store.get_case(case.case_id).status == CaseStatus.COMPLETED

    def test_join_trial_case_reopened(self, cascade, store, create_case):
        case = create_case(status=CaseStatus.JOIN_TRIAL)

        cascade.purge_and_reopen(case.case_id, event_id="evt-1")
        assert store.get_case(case.case_id).status == CaseStatus.OPEN_FOR_APPLICATIONS

    def test_missing_case(self, cascade):
        with pytest.raises(NotFoundError):
            cascade.purge_and_reopen("no-such-case", event_id="evt-1")

    def test_joins_caller_transaction(self, cascade, store, create_case, add_jurors):
        """Rolled back with the caller: applications and outbox unchanged."""
        case = create_case()
        add_jurors(case.case_id, ["juror-1"])

        with pytest.raises(RuntimeError):
            with store.transaction() as conn:
                cascade.purge_and_reopen(case.case_id, event_id="evt-1", conn=conn)
                raise RuntimeError("abort")

        assert len(store.list_applications(case.case_id)) == 1
        assert store.list_notifications(case_id=case.case_id) == []
