"""
Notification Relay and Gateway Tests.

- Backoff: delay = min(base * 2**attempt, max)
- Exhausted retries mark the row FAILED and never raise
- WebhookGateway posts one JSON request per send (httpx MockTransport)
"""

import json

import httpx
import pytest

from src.docket import (
    CaseLifecycleStore,
    LoggingGateway,
    NotificationDeliveryError,
    NotificationRecord,
    NotificationRelay,
    NotificationStatus,
    Recipient,
    RecipientKind,
    WebhookGateway,
)
from src.docket.notifications import build_gateway

from .conftest import RecordingGateway


@pytest.fixture
def outbox(temp_db_path) -> CaseLifecycleStore:
    return CaseLifecycleStore(temp_db_path)


def enqueue(store, key: str = "k-1") -> NotificationRecord:
    record = NotificationRecord.create(
        recipient_kind=RecipientKind.JUROR,
        recipient_id="juror-1",
        template_id="case_rescheduled",
        dedupe_key=key,
        case_id="case-1",
        payload={"case_id": "case-1"},
    )
    store.enqueue_notification(record)
    return record


class TestBackoff:
    @pytest.mark.parametrize(
        "attempt, expected",
        [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0), (4, 10.0), (10, 10.0)],
    )
    def test_delay(self, outbox, attempt, expected):
        relay = NotificationRelay(outbox, LoggingGateway(), base_delay=1.0, max_delay=10.0)
        assert relay.backoff_delay(attempt) == expected


class TestRelay:
    def test_delivered(self, outbox):
        gateway = RecordingGateway()
        relay = NotificationRelay(outbox, gateway, sleep=lambda s: None)
        record = enqueue(outbox)

        assert relay.deliver(record) is True

        row = outbox.get_notification(record.notification_id)
        assert row.status == NotificationStatus.DELIVERED
        assert row.attempts == 1
        assert row.sent_at is not None
        assert gateway.sent[0]["idempotency_key"] == "k-1"

    def test_exhausted_marks_failed(self, outbox):
        gateway = RecordingGateway()
        gateway.fail_times = 10
        delays = []
        relay = NotificationRelay(outbox, gateway, max_attempts=4, base_delay=0.5, sleep=delays.append)
        record = enqueue(outbox)

        assert relay.deliver(record) is False

        row = outbox.get_notification(record.notification_id)
        assert row.status == NotificationStatus.FAILED
        assert row.attempts == 4
        assert row.last_error == "gateway down"
        assert delays == [0.5, 1.0, 2.0]

    def test_unexpected_gateway_error_contained(self, outbox):
        class Broken:
            def send(self, recipient, template_id, payload, idempotency_key=None):
                raise KeyError("boom")

        relay = NotificationRelay(outbox, Broken(), max_attempts=2, sleep=lambda s: None)
        record = enqueue(outbox)

        assert relay.deliver(record) is False
        assert "Unexpected error" in outbox.get_notification(record.notification_id).last_error

    def test_claimed_row_not_resent(self, outbox):
        gateway = RecordingGateway()
        relay = NotificationRelay(outbox, gateway, sleep=lambda s: None)
        record = enqueue(outbox)

        assert relay.deliver(record) is True
        assert relay.deliver(record) is False
        assert gateway.calls == 1

    def test_deliver_pending(self, outbox):
        gateway = RecordingGateway()
        relay = NotificationRelay(outbox, gateway, sleep=lambda s: None)
        enqueue(outbox, "k-1")
        enqueue(outbox, "k-2")

        assert relay.deliver_pending() == 2
        assert relay.deliver_pending() == 0
        assert outbox.count_notifications_by_status()["delivered"] == 2


class TestWebhookGateway:
    def _gateway(self, handler) -> WebhookGateway:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return WebhookGateway("https://notify.example.com/hook", client=client)

    def test_posts_json(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        gateway = self._gateway(handler)
        result = gateway.send(
            Recipient(RecipientKind.ATTORNEY, "attorney-1"),
            "trial_reminder",
            {"case_id": "case-1"},
            idempotency_key="key-1",
        )

        assert result.delivered is True
        body = json.loads(seen[0].content)
        assert body == {
            "recipient": {"kind": "attorney", "id": "attorney-1"},
            "template_id": "trial_reminder",
            "payload": {"case_id": "case-1"},
        }
        assert seen[0].headers["X-Idempotency-Key"] == "key-1"

    def test_non_2xx_not_delivered(self):
        gateway = self._gateway(lambda request: httpx.Response(500, text="down"))
        result = gateway.send(Recipient(RecipientKind.JUROR, "j"), "t", {})
        assert result.delivered is False
        assert result.error.startswith("HTTP 500")

    def test_transport_error_raises_delivery_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        gateway = self._gateway(handler)
        with pytest.raises(NotificationDeliveryError):
            gateway.send(Recipient(RecipientKind.JUROR, "j"), "t", {}, idempotency_key="k")

    def test_timeout_raises_delivery_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        gateway = self._gateway(handler)
        with pytest.raises(NotificationDeliveryError) as exc_info:
            gateway.send(Recipient(RecipientKind.JUROR, "j"), "t", {})
        assert "Timeout" in exc_info.value.reason


class TestBuildGateway:
    def test_logging_without_url(self):
        assert isinstance(build_gateway(""), LoggingGateway)

    def test_webhook_with_url(self):
        gateway = build_gateway("https://notify.example.com/hook")
        assert isinstance(gateway, WebhookGateway)
        assert gateway.url == "https://notify.example.com/hook"
