"""
Docket Test Fixtures.

Base fixtures:
  - Empty temp-file database (WAL files cleaned up)
  - Mocked clock at a fixed UTC instant
  - Recording gateway in place of a real delivery transport

Per-test fixtures:
  - Case and application factories
  - A fully wired DocketService sharing the same store
"""

import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Optional

from src.docket import (
    ApplicationStatus,
    Case,
    CaseStatus,
    DeliveryResult,
    DocketService,
    JurorApplication,
    NotificationDeliveryError,
    Recipient,
    TimeSlot,
)


# Fixed trial instant for deterministic tests: slot 2026-03-10 15:00 at UTC+0
TRIAL_DATE = "2026-03-10"
TRIAL_TIME = "15:00"
TRIAL_INSTANT = datetime(2026, 3, 10, 15, 0, 0, tzinfo=timezone.utc)
FIXED_DATETIME = TRIAL_INSTANT - timedelta(days=10)

POOL = "travis-county"
ATTORNEY = "attorney-1"
ADMIN = "admin-1"


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at a fixed aware UTC instant
    - Advances only when explicitly ticked or set
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: int = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class RecordingGateway:
    """
    Gateway that records every send.

    ``fail_times`` makes the next N sends raise a delivery error;
    ``refuse`` makes every send return delivered=False.
    """

    def __init__(self):
        self.sent: list[dict] = []
        self.calls = 0
        self.fail_times = 0
        self.refuse = False

    def send(
        self,
        recipient: Recipient,
        template_id: str,
        payload: dict,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        self.calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise NotificationDeliveryError(idempotency_key or template_id, "gateway down")
        if self.refuse:
            return DeliveryResult(delivered=False, error="HTTP 500: boom")

        self.sent.append({
            "recipient": recipient,
            "template_id": template_id,
            "payload": payload,
            "idempotency_key": idempotency_key,
        })
        return DeliveryResult(delivered=True)

    def sent_to(self, template_id: str) -> list[str]:
        """Recipient strings ("kind:id") that received ``template_id``."""
        return [str(s["recipient"]) for s in self.sent if s["template_id"] == template_id]


def slot(date: str = TRIAL_DATE, time: str = TRIAL_TIME) -> TimeSlot:
    return TimeSlot.parse(date, time)


# =============================================================================
# Database / Component Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def mock_clock() -> MockClock:
    """Create a mock clock at fixed time."""
    return MockClock()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture
def sleeps() -> list:
    """Backoff delays requested by the relay, in order."""
    return []


@pytest.fixture
def service(
    temp_db_path: str,
    gateway: RecordingGateway,
    mock_clock: MockClock,
    sleeps: list,
) -> Generator[DocketService, None, None]:
    """DocketService with recording gateway, mocked clock and no real sleeps."""
    svc = DocketService.create(
        temp_db_path,
        gateway=gateway,
        tick_interval=0.05,
        max_workers=1,
        admin_recipients=[ADMIN],
        clock=mock_clock.now,
        sleep=sleeps.append,
    )
    yield svc
    svc.stop(timeout=5)


@pytest.fixture
def store(service: DocketService):
    return service.store


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def create_case(service: DocketService) -> Callable:
    """
    Factory fixture for filing cases.

    Returns a function that files a case with the specified parameters.
    """

    def _create(
        date: str = TRIAL_DATE,
        time: str = TRIAL_TIME,
        resource_pool: str = POOL,
        attorney_id: str = ATTORNEY,
        timezone_offset_minutes: int = 0,
        status: CaseStatus = CaseStatus.OPEN_FOR_APPLICATIONS,
        title: str = "Smith v. Jones",
    ) -> Case:
        return service.file_case(
            title=title,
            attorney_id=attorney_id,
            resource_pool=resource_pool,
            slot=slot(date, time),
            timezone_offset_minutes=timezone_offset_minutes,
            status=status,
        )

    return _create


@pytest.fixture
def add_jurors(service: DocketService) -> Callable:
    """Factory fixture for juror applications."""

    def _add(
        case_id: str,
        juror_ids: list[str],
        status: ApplicationStatus = ApplicationStatus.APPROVED,
    ) -> list[JurorApplication]:
        return [
            service.add_juror_application(case_id, juror_id, status=status)
            for juror_id in juror_ids
        ]

    return _add


# =============================================================================
# Assertion Helpers
# =============================================================================


def assert_case_slot(service: DocketService, case_id: str, expected: TimeSlot):
    """Assert a case sits at the expected slot."""
    case = service.get_case(case_id)
    assert case.slot == expected, f"Expected {expected}, got {case.slot}"
