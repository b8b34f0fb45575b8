"""
Tests for the docket HTTP surface.

Each test gets a fresh DocketService behind the app (recording gateway, no
real sleeps). Docket errors surface as {"detail": {"code", "message"}}.
"""

import pytest
from fastapi.testclient import TestClient

from src.api._docket_state import init_docket_service, shutdown_docket_service
from src.api.main import app
from src.docket.notifications import TEMPLATE_RESCHEDULE_REQUESTED

from .conftest import FIXED_DATETIME, RecordingGateway


CASE_BODY = {
    "title": "Smith v. Jones",
    "attorney_id": "attorney-1",
    "resource_pool": "travis-county",
    "scheduled_date": "2026-03-10",
    "scheduled_time": "15:00",
    "timezone_offset_minutes": 0,
}


@pytest.fixture
def api_gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def client(temp_db_path, api_gateway):
    """TestClient over a freshly initialized docket service, clock fixed before the trials."""
    shutdown_docket_service()
    init_docket_service(
        temp_db_path,
        gateway=api_gateway,
        tick_interval=0.05,
        admin_recipients=["admin-1"],
        clock=lambda: FIXED_DATETIME,
        sleep=lambda seconds: None,
    )
    yield TestClient(app)
    shutdown_docket_service()


def file_case(client, **overrides) -> dict:
    response = client.post("/cases", json={**CASE_BODY, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


def error_code(response) -> str:
    return response.json()["detail"]["code"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "version" in response.json()


class TestCases:
    def test_file_case(self, client):
        case = file_case(client)
        assert case["status"] == "open_for_applications"
        assert case["scheduled_time"] == "15:00:00"
        assert case["trial_instant_utc"] == "2026-03-10T15:00:00Z"
        assert case["reminders"] == {"4d": False, "3d": False, "2d": False, "1d": False}

    def test_state_supplies_offset(self, client):
        body = dict(CASE_BODY, state="Texas")
        del body["timezone_offset_minutes"]
        response = client.post("/cases", json=body)
        assert response.json()["trial_instant_utc"] == "2026-03-10T21:00:00Z"

    def test_slot_taken(self, client):
        file_case(client)
        response = client.post("/cases", json=dict(CASE_BODY, attorney_id="attorney-2"))
        assert response.status_code == 409
        assert error_code(response) == "SLOT_UNAVAILABLE"

    def test_malformed_slot(self, client):
        response = client.post("/cases", json=dict(CASE_BODY, scheduled_date="2026-13-01"))
        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"

    def test_missing_case(self, client):
        response = client.get("/cases/does-not-exist")
        assert response.status_code == 404
        assert error_code(response) == "NOT_FOUND"

    def test_applications(self, client):
        case = file_case(client)
        url = f"/cases/{case['case_id']}/applications"

        assert client.post(url, json={"juror_id": "juror-1"}).status_code == 201
        duplicate = client.post(url, json={"juror_id": "juror-1"})
        assert duplicate.status_code == 400

        listing = client.get(url).json()
        assert listing["total"] == 1
        assert listing["applications"][0]["status"] == "pending"


class TestTrialWindow:
    def test_war_room_open_at_t_minus_55m(self, client):
        case = file_case(client)
        response = client.get(
            f"/cases/{case['case_id']}/window", params={"now": "2026-03-10T14:05:00Z"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["minutes_until_trial"] == 55
        assert body["war_room_open"] is True
        assert body["trial_started"] is False

    def test_closed_at_t_minus_65m(self, client):
        case = file_case(client)
        response = client.get(
            f"/cases/{case['case_id']}/window", params={"now": "2026-03-10T13:55:00Z"}
        )
        assert response.json()["war_room_open"] is False

    def test_naive_now_rejected(self, client):
        case = file_case(client)
        response = client.get(
            f"/cases/{case['case_id']}/window", params={"now": "2026-03-10T13:55:00"}
        )
        assert response.status_code == 400


class TestRescheduleRequests:
    def _open_request(self, client, case_id: str) -> dict:
        response = client.post(
            f"/cases/{case_id}/reschedule-requests",
            json={
                "attorney_id": "attorney-1",
                "new_slot": {"date": "2026-03-12", "time": "10:00"},
                "reason": "Witness unavailable",
            },
        )
        assert response.status_code == 201, response.text
        return response.json()

    def test_approve_flow(self, client, api_gateway):
        case = file_case(client)
        for juror in ("juror-1", "juror-2"):
            client.post(
                f"/cases/{case['case_id']}/applications",
                json={"juror_id": juror, "status": "approved"},
            )

        request = self._open_request(client, case["case_id"])
        assert request["status"] == "pending"
        assert request["kind"] == "attorney_initiated"

        response = client.post(
            f"/reschedule-requests/{request['request_id']}/approve",
            json={"admin_id": "admin-1"},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["request"]["status"] == "approved"
        assert body["case"]["scheduled_date"] == "2026-03-12"
        assert body["case"]["schedule_version"] == 1
        assert body["deleted_applications"] == 2
        assert sorted(body["affected_juror_ids"]) == ["juror-1", "juror-2"]
        assert body["notifications_enqueued"] == 3
        assert len(api_gateway.sent) == 4
        assert api_gateway.sent_to(TEMPLATE_RESCHEDULE_REQUESTED) == ["admin:admin-1"]

        applications = client.get(f"/cases/{case['case_id']}/applications").json()
        assert applications["total"] == 0

    def test_approve_twice(self, client):
        case = file_case(client)
        request = self._open_request(client, case["case_id"])
        url = f"/reschedule-requests/{request['request_id']}/approve"

        assert client.post(url, json={"admin_id": "admin-1"}).status_code == 200
        again = client.post(url, json={"admin_id": "admin-1"})
        assert again.status_code == 409
        assert error_code(again) == "ALREADY_RESOLVED"

    def test_duplicate_pending(self, client):
        case = file_case(client)
        self._open_request(client, case["case_id"])

        response = client.post(
            f"/cases/{case['case_id']}/reschedule-requests",
            json={"attorney_id": "attorney-1", "new_slot": {"date": "2026-03-13", "time": "10:00"}},
        )
        assert response.status_code == 409
        assert error_code(response) == "DUPLICATE_PENDING_REQUEST"

    def test_reject_requires_comments(self, client):
        case = file_case(client)
        request = self._open_request(client, case["case_id"])
        url = f"/reschedule-requests/{request['request_id']}/reject"

        missing = client.post(url, json={"admin_id": "admin-1"})
        assert missing.status_code == 400
        assert error_code(missing) == "MISSING_REASON"

        rejected = client.post(url, json={"admin_id": "admin-1", "comments": "Docket full"})
        assert rejected.status_code == 200
        assert rejected.json()["admin_comments"] == "Docket full"

        case_after = client.get(f"/cases/{case['case_id']}").json()
        assert case_after["scheduled_date"] == "2026-03-10"

    def test_listing(self, client):
        case = file_case(client)
        self._open_request(client, case["case_id"])

        pending = client.get("/reschedule-requests", params={"status": "pending"}).json()
        assert pending["total"] == 1
        assert client.get(f"/cases/{case['case_id']}/reschedule-requests").json()["total"] == 1


class TestProposals:
    SLOTS = [{"date": "2026-03-11", "time": "09:00"}, {"date": "2026-03-12", "time": "09:00"}]

    def test_confirm_flow(self, client):
        case = file_case(client)
        proposal = client.post(
            f"/cases/{case['case_id']}/proposals",
            json={"admin_id": "admin-1", "slots": self.SLOTS},
        )
        assert proposal.status_code == 201
        assert proposal.json()["kind"] == "admin_initiated"

        slots = client.get(f"/cases/{case['case_id']}/proposals/slots").json()
        assert len(slots["selectable_slots"]) == 2

        response = client.post(
            f"/cases/{case['case_id']}/proposals/confirm",
            json={"slot": self.SLOTS[1], "attorney_id": "attorney-1"},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["case"]["scheduled_date"] == "2026-03-12"
        assert body["request"]["selected_slot"]["date"] == "2026-03-12"

    def test_confirm_claimed_slot(self, client):
        case = file_case(client)
        client.post(
            f"/cases/{case['case_id']}/proposals",
            json={"admin_id": "admin-1", "slots": self.SLOTS},
        )
        file_case(client, attorney_id="attorney-2", scheduled_date="2026-03-11", scheduled_time="09:00")

        response = client.post(
            f"/cases/{case['case_id']}/proposals/confirm", json={"slot": self.SLOTS[0]}
        )
        assert response.status_code == 409
        assert error_code(response) == "SLOT_UNAVAILABLE"

        slots = client.get(f"/cases/{case['case_id']}/proposals/slots").json()
        assert slots["selectable_slots"] == [{"date": "2026-03-12", "time": "09:00:00"}]

    def test_decline_requires_reason(self, client):
        case = file_case(client)
        client.post(
            f"/cases/{case['case_id']}/proposals",
            json={"admin_id": "admin-1", "slots": self.SLOTS},
        )
        url = f"/cases/{case['case_id']}/proposals/decline"

        missing = client.post(url, json={"attorney_id": "attorney-1"})
        assert missing.status_code == 400
        assert error_code(missing) == "MISSING_REASON"

        declined = client.post(url, json={"attorney_id": "attorney-1", "reason": "Out of town"})
        assert declined.status_code == 200
        assert declined.json()["status"] == "rejected"

    def test_no_pending_proposal(self, client):
        case = file_case(client)
        response = client.get(f"/cases/{case['case_id']}/proposals/slots")
        assert response.status_code == 404


class TestReminders:
    def test_manual_tick(self, client, api_gateway):
        file_case(client)

        response = client.post("/reminders/tick", json={"now_utc": "2026-03-06T15:00:00Z"})
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert body["dispatched"][0]["threshold"] == "4d"
        assert body["dispatched"][0]["recipient_kind"] == "attorney"

        again = client.post("/reminders/tick", json={"now_utc": "2026-03-06T15:00:00Z"})
        assert again.json()["count"] == 0
        assert len(api_gateway.sent) == 1

    def test_status(self, client):
        file_case(client)
        client.post("/reminders/tick", json={"now_utc": "2026-03-06T15:00:00Z"})

        status = client.get("/reminders/status").json()
        assert status["running"] is False
        assert status["state"] == "STOPPED"
        assert status["ticks_completed"] == 1
        assert status["notifications"]["delivered"] == 1

    def test_start_and_stop(self, client):
        started = client.post("/reminders/start", json={"run_recovery": False})
        assert started.json()["success"] is True

        again = client.post("/reminders/start", json={"run_recovery": False})
        assert again.json()["message"] == "Reminder loop is already running"

        stopped = client.post("/reminders/stop", json={"timeout": 5})
        assert stopped.json()["success"] is True
        assert client.get("/reminders/status").json()["running"] is False


class TestCalendar:
    BLOCK_BODY = {
        "resource_pool": "travis-county",
        "date": "2026-03-12",
        "time": "10:00",
        "reason": "Judge at conference",
        "blocked_by": "admin-1",
    }

    def test_block_check_and_unblock(self, client):
        blocked = client.post("/calendar/blocks", json=self.BLOCK_BODY)
        assert blocked.status_code == 201, blocked.text
        block = blocked.json()
        assert block["time"] == "10:00:00"

        params = {"resource_pool": "travis-county", "date": "2026-03-12", "time": "10:00"}
        check = client.get("/calendar/check", params=params).json()
        assert check["available"] is False
        assert check["block_id"] == block["block_id"]

        listing = client.get("/calendar/blocks", params={"resource_pool": "travis-county"})
        assert listing.json()["total"] == 1

        removed = client.delete(f"/calendar/blocks/{block['block_id']}")
        assert removed.status_code == 200
        assert client.get("/calendar/check", params=params).json()["available"] is True

        missing = client.delete(f"/calendar/blocks/{block['block_id']}")
        assert missing.status_code == 404
        assert error_code(missing) == "NOT_FOUND"

    def test_duplicate_block_conflicts(self, client):
        client.post("/calendar/blocks", json=self.BLOCK_BODY)
        response = client.post("/calendar/blocks", json=self.BLOCK_BODY)
        assert response.status_code == 409
        assert error_code(response) == "SLOT_UNAVAILABLE"

    def test_weekend_block_rejected(self, client):
        response = client.post("/calendar/blocks", json={**self.BLOCK_BODY, "date": "2026-03-14"})
        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"

    def test_filing_into_blocked_slot(self, client):
        client.post("/calendar/blocks", json=self.BLOCK_BODY)
        response = client.post(
            "/cases", json={**CASE_BODY, "scheduled_date": "2026-03-12", "scheduled_time": "10:00"}
        )
        assert response.status_code == 409
        assert error_code(response) == "SLOT_UNAVAILABLE"

    def test_available_slots(self, client):
        file_case(client)
        response = client.get(
            "/calendar/available",
            params={
                "resource_pool": "travis-county",
                "start_date": "2026-03-10",
                "end_date": "2026-03-10",
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 16
        assert body["slots"][0] == {"date": "2026-03-10", "time": "09:00:00", "day_of_week": "Tuesday"}
        assert "15:00:00" not in [s["time"] for s in body["slots"]]

    def test_available_range_too_long(self, client):
        response = client.get(
            "/calendar/available",
            params={
                "resource_pool": "travis-county",
                "start_date": "2026-03-01",
                "end_date": "2026-12-31",
            },
        )
        assert response.status_code == 400


class TestPastSlots:
    def test_request_for_past_slot_rejected(self, client):
        case = file_case(client)
        response = client.post(
            f"/cases/{case['case_id']}/reschedule-requests",
            json={
                "attorney_id": "attorney-1",
                "new_slot": {"date": "2026-02-20", "time": "10:00"},
            },
        )
        assert response.status_code == 400
        assert error_code(response) == "VALIDATION_ERROR"
