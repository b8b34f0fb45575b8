"""
DocketService wiring tests.

Thin facade checks: status aggregation, application guards, window
evaluation against the injected clock. Environment defaults last.
"""

import importlib
from datetime import timedelta

import pytest

from src.docket import (
    ApplicationStatus,
    CaseStatus,
    NotFoundError,
    ValidationError,
)
from src.docket import config

from .conftest import ATTORNEY, TRIAL_INSTANT, slot


class TestStatus:
    def test_initial_status(self, service):
        status = service.get_status()
        assert status["running"] is False
        assert status["reminders"]["state"] == "STOPPED"
        assert status["pending_requests"] == 0
        assert sum(status["notifications"].values()) == 0

    def test_pending_requests_counted(self, service, create_case):
        case = create_case()
        service.create_reschedule_request(case.case_id, ATTORNEY, slot("2026-03-12", "10:00"))
        assert service.get_status()["pending_requests"] == 1


class TestApplications:
    def test_defaults_to_pending(self, service, create_case):
        case = create_case()
        application = service.add_juror_application(case.case_id, "juror-1")
        assert application.status == ApplicationStatus.PENDING
        assert [a.juror_id for a in service.list_applications(case.case_id)] == ["juror-1"]

    def test_closed_case_rejected(self, service, store, create_case):
        case = create_case()
        store.update_case_status(case.case_id, CaseStatus.COMPLETED)
        with pytest.raises(ValidationError):
            service.add_juror_application(case.case_id, "juror-1")

    def test_missing_case(self, service):
        with pytest.raises(NotFoundError):
            service.list_applications("missing")


class TestWindow:
    def test_uses_clock_when_now_omitted(self, service, create_case, mock_clock):
        case = create_case()
        mock_clock.set(TRIAL_INSTANT - timedelta(minutes=45))

        window = service.evaluate_case_window(case.case_id)
        assert window.minutes_until_trial == 45
        assert window.war_room_open is True

    def test_evaluation_is_read_only(self, service, create_case):
        case = create_case()
        service.evaluate_case_window(case.case_id, TRIAL_INSTANT - timedelta(minutes=10))

        after = service.get_case(case.case_id)
        assert after.war_room_opened is False
        assert after.status == CaseStatus.OPEN_FOR_APPLICATIONS


class TestConfig:
    @pytest.fixture
    def reload_config(self, monkeypatch):
        """Reload config under a patched environment, then restore it."""
        yield lambda: importlib.reload(config)
        monkeypatch.undo()
        importlib.reload(config)

    def test_defaults(self, monkeypatch, reload_config):
        monkeypatch.delenv("DOCKET_AUTOSTART_REMINDERS", raising=False)
        monkeypatch.delenv("DOCKET_ADMIN_NOTIFY_IDS", raising=False)
        reload_config()

        assert config.AUTOSTART_REMINDERS is False
        assert config.ADMIN_NOTIFY_IDS == ["docket-admin"]

    def test_autostart_opt_in(self, monkeypatch, reload_config):
        monkeypatch.setenv("DOCKET_AUTOSTART_REMINDERS", "true")
        reload_config()
        assert config.AUTOSTART_REMINDERS is True

    def test_admin_ids_split(self, monkeypatch, reload_config):
        monkeypatch.setenv("DOCKET_ADMIN_NOTIFY_IDS", "clerk-1, clerk-2,,")
        reload_config()
        assert config.ADMIN_NOTIFY_IDS == ["clerk-1", "clerk-2"]
