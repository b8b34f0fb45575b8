"""
Notification gateway and outbox relay.

The gateway is the external delivery transport (email/SMS provider). The
docket only ever talks to it through ``NotificationRelay``, which:

1. Claims a committed outbox row (PENDING -> SENDING) so one caller sends it
2. Calls the gateway with bounded exponential backoff
3. Records DELIVERED, or FAILED once attempts are exhausted

A failed row is never re-sent automatically and never rolls back the state
change that produced it.

Backoff:
    delay = min(base_delay * (2 ** attempt), max_delay)
    Example with 1s base: 1s -> 2s -> 4s
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

import httpx

from . import config
from .entities import NotificationRecord, NotificationStatus, RecipientKind
from .errors import NotificationDeliveryError
from .persistence import CaseLifecycleStore


logger = logging.getLogger(__name__)


# Template identifiers understood by the gateway
TEMPLATE_TRIAL_REMINDER = "trial_reminder"
TEMPLATE_WAR_ROOM_OPEN = "war_room_open"
TEMPLATE_RESCHEDULE_APPROVED = "reschedule_approved"
TEMPLATE_RESCHEDULE_REJECTED = "reschedule_rejected"
TEMPLATE_CASE_RESCHEDULED = "case_rescheduled"
TEMPLATE_RESCHEDULE_PROPOSED = "reschedule_proposed"
TEMPLATE_RESCHEDULE_CONFIRMED = "reschedule_confirmed"
TEMPLATE_RESCHEDULE_DECLINED = "reschedule_declined"
TEMPLATE_RESCHEDULE_REQUESTED = "reschedule_requested"


@dataclass(frozen=True)
class Recipient:
    kind: RecipientKind
    recipient_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.recipient_id}"


@dataclass(frozen=True)
class DeliveryResult:
    delivered: bool
    error: Optional[str] = None


class NotificationGateway(Protocol):
    """Protocol for the external delivery transport."""

    def send(
        self,
        recipient: Recipient,
        template_id: str,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Deliver one message.

        Implementations either return a DeliveryResult or raise
        NotificationDeliveryError; the relay treats both the same way.
        """
        ...


# =============================================================================
# Gateways
# =============================================================================


class LoggingGateway:
    """Gateway that only logs. Default when no webhook URL is configured."""

    def send(
        self,
        recipient: Recipient,
        template_id: str,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        logger.info(
            f"[Notify] {template_id} -> {recipient} "
            f"(case={payload.get('case_id')}, key={idempotency_key})"
        )
        return DeliveryResult(delivered=True)


class WebhookGateway:
    """
    Gateway that POSTs each notification as JSON.

    One HTTP attempt per ``send``; retries belong to the relay.
    """

    def __init__(
        self,
        url: str,
        timeout: float = config.NOTIFICATION_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, body: dict, headers: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self.url, json=body, headers=headers)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=body, headers=headers)

    def send(
        self,
        recipient: Recipient,
        template_id: str,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        body = {
            "recipient": {"kind": recipient.kind.value, "id": recipient.recipient_id},
            "template_id": template_id,
            "payload": payload,
        }
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "TrialDocket/1.0",
            "X-Notification-Template": template_id,
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key

        key = idempotency_key or template_id
        try:
            response = self._post(body, headers)
        except httpx.TimeoutException as e:
            raise NotificationDeliveryError(key, f"Timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise NotificationDeliveryError(key, f"Request error: {e}") from e

        if 200 <= response.status_code < 300:
            return DeliveryResult(delivered=True)

        return DeliveryResult(
            delivered=False,
            error=f"HTTP {response.status_code}: {response.text[:200]}",
        )


def build_gateway(webhook_url: Optional[str] = None) -> NotificationGateway:
    """Webhook gateway when a URL is configured, logging gateway otherwise."""
    url = webhook_url if webhook_url is not None else config.NOTIFICATION_WEBHOOK_URL
    if url:
        logger.info(f"Notifications will be POSTed to {url}")
        return WebhookGateway(url)
    return LoggingGateway()


# =============================================================================
# Relay
# =============================================================================


class NotificationRelay:
    """Delivers committed outbox rows through the gateway."""

    def __init__(
        self,
        store: CaseLifecycleStore,
        gateway: NotificationGateway,
        max_attempts: int = config.NOTIFICATION_MAX_ATTEMPTS,
        base_delay: float = config.NOTIFICATION_RETRY_BASE_DELAY,
        max_delay: float = config.NOTIFICATION_RETRY_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize NotificationRelay.

        Args:
            store: Store holding the outbox
            gateway: Delivery transport
            max_attempts: Gateway calls per notification before giving up
            base_delay: Base delay for exponential backoff
            max_delay: Ceiling for a single backoff delay
            sleep: Sleep function, replaceable in tests
        """
        self.store = store
        self.gateway = gateway
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def deliver(self, record: NotificationRecord) -> bool:
        """
        Claim and deliver one outbox row.

        Returns:
            True if the gateway accepted it. False if delivery failed or
            another caller had already claimed the row.
        """
        if not self.store.claim_notification(record.notification_id):
            logger.debug(f"Notification {record.notification_id} already claimed")
            return False

        recipient = Recipient(record.recipient_kind, record.recipient_id)
        last_error: Optional[str] = None

        for attempt in range(self.max_attempts):
            try:
                result = self.gateway.send(
                    recipient,
                    record.template_id,
                    record.payload,
                    idempotency_key=record.dedupe_key,
                )
                if result.delivered:
                    self.store.finish_notification(
                        record.notification_id,
                        NotificationStatus.DELIVERED,
                        attempts=attempt + 1,
                    )
                    logger.debug(
                        f"Delivered {record.template_id} to {recipient} "
                        f"(attempt {attempt + 1}/{self.max_attempts})"
                    )
                    return True
                last_error = result.error or "gateway refused delivery"

            except NotificationDeliveryError as e:
                last_error = e.reason

            except Exception as e:
                last_error = f"Unexpected error: {e}"
                logger.error(
                    f"Gateway error for notification {record.notification_id}: {e}",
                    exc_info=True,
                )

            logger.warning(
                f"Delivery of {record.template_id} to {recipient} failed "
                f"(attempt {attempt + 1}/{self.max_attempts}): {last_error}"
            )

            if attempt < self.max_attempts - 1:
                self._sleep(self.backoff_delay(attempt))

        self.store.finish_notification(
            record.notification_id,
            NotificationStatus.FAILED,
            attempts=self.max_attempts,
            last_error=last_error,
        )
        logger.error(
            f"Notification {record.notification_id} ({record.template_id} -> {recipient}) "
            f"failed after {self.max_attempts} attempts: {last_error}"
        )
        return False

    def deliver_all(self, records: Iterable[NotificationRecord]) -> list[tuple[NotificationRecord, bool]]:
        """Deliver several rows in order, returning each outcome."""
        return [(record, self.deliver(record)) for record in records]

    def deliver_pending(self, limit: int = 500) -> int:
        """
        Deliver every PENDING outbox row.

        Returns:
            Number delivered
        """
        pending = self.store.list_notifications(status=NotificationStatus.PENDING, limit=limit)
        delivered = sum(1 for _, ok in self.deliver_all(pending) if ok)
        if pending:
            logger.info(f"Relayed {delivered}/{len(pending)} pending notifications")
        return delivered
