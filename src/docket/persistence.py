"""
Case Lifecycle Store.

SQLite persistence and transactional boundary for cases, juror applications,
reschedule negotiations, calendar blocks and the notification outbox.

Provides:
- Write transactions opened with BEGIN IMMEDIATE, so concurrent writers
  serialize at the database rather than failing at commit
- Compare-and-swap updates (``UPDATE ... WHERE <expected>``) for request
  resolution, reminder flags and outbox claims
- Partial unique indexes that close check-then-act races at commit:
  one pending negotiation per case, one active case per pool slot
- A trigger that rejects any update to a resolved negotiation

Methods that take ``conn`` join the caller's transaction when one is given
and open their own otherwise. The store holds no business rules beyond the
schema constraints.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .entities import (
    AdminInitiated,
    ApplicationStatus,
    AttorneyInitiated,
    BlockedSlot,
    Case,
    CaseStatus,
    JurorApplication,
    NegotiationKind,
    NegotiationRequest,
    NegotiationStatus,
    NotificationRecord,
    NotificationStatus,
    RecipientKind,
    ReminderState,
    ReminderThreshold,
    TimeSlot,
)
from .errors import (
    AlreadyResolvedError,
    DuplicatePendingRequestError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from .timezones import now_iso, to_iso


logger = logging.getLogger(__name__)

TERMINAL_CASE_STATUSES = (CaseStatus.COMPLETED.value, CaseStatus.CANCELLED.value)

# Seconds a writer waits on a locked database before giving up
BUSY_TIMEOUT_SECONDS = 30.0


class CaseLifecycleStore:
    """
    SQLite-based persistence for all docket entities.

    Every public method opens a short-lived connection, so one store can be
    shared by the API threads and the reminder loop.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = str(db_path)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for a write transaction.

        Commits on normal exit, rolls back and re-raises on any exception.
        """
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _scope(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        """Join ``conn`` if given, otherwise run in a fresh transaction."""
        if conn is not None:
            yield conn
        else:
            with self.transaction() as own:
                yield own

    @contextmanager
    def _reader(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
        else:
            with self._connection() as own:
                yield own

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cases (
                    case_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    attorney_id TEXT NOT NULL,
                    resource_pool TEXT NOT NULL,
                    scheduled_date TEXT NOT NULL,
                    scheduled_time TEXT NOT NULL,
                    timezone_offset_minutes INTEGER NOT NULL DEFAULT 0,
                    trial_instant_utc TEXT NOT NULL,
                    status TEXT NOT NULL,
                    reminder_4d_sent INTEGER NOT NULL DEFAULT 0,
                    reminder_3d_sent INTEGER NOT NULL DEFAULT 0,
                    reminder_2d_sent INTEGER NOT NULL DEFAULT 0,
                    reminder_1d_sent INTEGER NOT NULL DEFAULT 0,
                    war_room_opened INTEGER NOT NULL DEFAULT 0,
                    schedule_version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # One active case per (pool, date, time)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_cases_active_slot
                ON cases (resource_pool, scheduled_date, scheduled_time)
                WHERE status NOT IN ('completed', 'cancelled')
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_cases_status
                ON cases (status, trial_instant_utc)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS juror_applications (
                    application_id TEXT PRIMARY KEY,
                    case_id TEXT NOT NULL,
                    juror_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (case_id, juror_id),
                    FOREIGN KEY (case_id) REFERENCES cases(case_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS negotiation_requests (
                    request_id TEXT PRIMARY KEY,
                    case_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attorney_id TEXT,
                    new_scheduled_date TEXT,
                    new_scheduled_time TEXT,
                    reason TEXT,
                    attorney_comments TEXT,
                    proposed_by TEXT,
                    offered_slots TEXT,
                    selected_slot TEXT,
                    original_scheduled_date TEXT NOT NULL,
                    original_scheduled_time TEXT NOT NULL,
                    admin_id TEXT,
                    admin_comments TEXT,
                    responded_at TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (case_id) REFERENCES cases(case_id)
                )
            """)

            # At most one pending negotiation per case, of either kind
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS ux_negotiation_pending
                ON negotiation_requests (case_id)
                WHERE status = 'pending'
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_negotiation_status
                ON negotiation_requests (status, created_at)
            """)

            # Resolved negotiations are immutable
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS trg_negotiation_terminal
                BEFORE UPDATE ON negotiation_requests
                WHEN OLD.status != 'pending'
                BEGIN
                    SELECT RAISE(ABORT, 'negotiation request is terminal');
                END
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    recipient_kind TEXT NOT NULL,
                    recipient_id TEXT NOT NULL,
                    case_id TEXT,
                    template_id TEXT NOT NULL,
                    payload TEXT NOT NULL DEFAULT '{}',
                    dedupe_key TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    sent_at TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_notifications_status
                ON notifications (status, created_at)
            """)

            # Admin holds; one per (pool, date, time)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS blocked_slots (
                    block_id TEXT PRIMARY KEY,
                    resource_pool TEXT NOT NULL,
                    blocked_date TEXT NOT NULL,
                    blocked_time TEXT NOT NULL,
                    reason TEXT,
                    blocked_by TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (resource_pool, blocked_date, blocked_time)
                )
            """)

    # =========================================================================
    # Case Operations
    # =========================================================================

    def create_case(self, case: Case, conn: Optional[sqlite3.Connection] = None) -> Case:
        """
        Insert a new case.

        Raises:
            SlotUnavailableError: If another active case holds the slot
        """
        try:
            with self._scope(conn) as c:
                c.execute(
                    """
                    INSERT INTO cases
                    (case_id, title, attorney_id, resource_pool, scheduled_date,
                     scheduled_time, timezone_offset_minutes, trial_instant_utc, status,
                     reminder_4d_sent, reminder_3d_sent, reminder_2d_sent, reminder_1d_sent,
                     war_room_opened, schedule_version, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        case.case_id,
                        case.title,
                        case.attorney_id,
                        case.resource_pool,
                        case.slot.date,
                        case.slot.time,
                        case.timezone_offset_minutes,
                        to_iso(case.trial_instant_utc),
                        case.status.value,
                        int(case.reminders.sent_4d),
                        int(case.reminders.sent_3d),
                        int(case.reminders.sent_2d),
                        int(case.reminders.sent_1d),
                        int(case.war_room_opened),
                        case.schedule_version,
                        case.created_at,
                        case.updated_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "ux_cases_active_slot" in str(e) or "scheduled_date" in str(e):
                raise SlotUnavailableError(
                    str(case.slot),
                    case.resource_pool,
                    self._slot_holder(case.resource_pool, case.slot),
                ) from e
            raise
        return case

    def get_case(self, case_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Case]:
        """Get a case by ID."""
        with self._reader(conn) as c:
            row = c.execute(
                "SELECT * FROM cases WHERE case_id = ?",
                (case_id,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_case(row)

    def require_case(self, case_id: str, conn: Optional[sqlite3.Connection] = None) -> Case:
        """Get a case by ID or raise NotFoundError."""
        case = self.get_case(case_id, conn=conn)
        if case is None:
            raise NotFoundError("Case", case_id)
        return case

    def _row_to_case(self, row: sqlite3.Row) -> Case:
        return Case(
            case_id=row["case_id"],
            title=row["title"],
            attorney_id=row["attorney_id"],
            resource_pool=row["resource_pool"],
            slot=TimeSlot(date=row["scheduled_date"], time=row["scheduled_time"]),
            timezone_offset_minutes=row["timezone_offset_minutes"],
            status=CaseStatus(row["status"]),
            reminders=ReminderState(
                sent_4d=bool(row["reminder_4d_sent"]),
                sent_3d=bool(row["reminder_3d_sent"]),
                sent_2d=bool(row["reminder_2d_sent"]),
                sent_1d=bool(row["reminder_1d_sent"]),
            ),
            war_room_opened=bool(row["war_room_opened"]),
            schedule_version=row["schedule_version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def list_active_cases(self, limit: Optional[int] = None) -> list[Case]:
        """List non-terminal cases ordered by trial instant."""
        query = (
            "SELECT * FROM cases WHERE status NOT IN (?, ?) "
            "ORDER BY trial_instant_utc ASC"
        )
        params: list = list(TERMINAL_CASE_STATUSES)
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_case(row) for row in rows]

    def find_case_in_slot(
        self,
        resource_pool: str,
        slot: TimeSlot,
        exclude_case_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Case]:
        """Return the active case holding ``slot`` in ``resource_pool``, if any."""
        query = """
            SELECT * FROM cases
            WHERE resource_pool = ?
              AND scheduled_date = ?
              AND scheduled_time = ?
              AND status NOT IN (?, ?)
        """
        params: list = [resource_pool, slot.date, slot.time, *TERMINAL_CASE_STATUSES]
        if exclude_case_id is not None:
            query += " AND case_id != ?"
            params.append(exclude_case_id)

        with self._reader(conn) as c:
            row = c.execute(query + " LIMIT 1", params).fetchone()

        if row is None:
            return None
        return self._row_to_case(row)

    def _slot_holder(self, resource_pool: str, slot: TimeSlot) -> Optional[str]:
        holder = self.find_case_in_slot(resource_pool, slot)
        return holder.case_id if holder else None

    def reschedule_case(
        self,
        case_id: str,
        slot: TimeSlot,
        conn: sqlite3.Connection,
    ) -> Case:
        """
        Move a case to a new slot and clear its reminder state.

        Must run inside the approval transaction. The partial unique index is
        the commit-time guard against a slot claimed since validation.

        Raises:
            NotFoundError: If the case does not exist
            SlotUnavailableError: If another active case now holds the slot
        """
        case = self.require_case(case_id, conn=conn)
        moved = Case(
            case_id=case.case_id,
            title=case.title,
            attorney_id=case.attorney_id,
            resource_pool=case.resource_pool,
            slot=slot,
            timezone_offset_minutes=case.timezone_offset_minutes,
        )
        try:
            conn.execute(
                """
                UPDATE cases
                SET scheduled_date = ?,
                    scheduled_time = ?,
                    trial_instant_utc = ?,
                    reminder_4d_sent = 0,
                    reminder_3d_sent = 0,
                    reminder_2d_sent = 0,
                    reminder_1d_sent = 0,
                    war_room_opened = 0,
                    schedule_version = schedule_version + 1,
                    updated_at = ?
                WHERE case_id = ?
                """,
                (
                    slot.date,
                    slot.time,
                    to_iso(moved.trial_instant_utc),
                    now_iso(),
                    case_id,
                ),
            )
        except sqlite3.IntegrityError as e:
            holder = self.find_case_in_slot(
                case.resource_pool, slot, exclude_case_id=case_id, conn=conn
            )
            raise SlotUnavailableError(
                str(slot),
                case.resource_pool,
                holder.case_id if holder else None,
            ) from e

        return self.require_case(case_id, conn=conn)

    def update_case_status(
        self,
        case_id: str,
        status: CaseStatus,
        expected: Optional[Iterable[CaseStatus]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """
        Set a case's status, optionally only from one of ``expected``.

        Returns:
            True if the row changed
        """
        query = "UPDATE cases SET status = ?, updated_at = ? WHERE case_id = ?"
        params: list = [status.value, now_iso(), case_id]
        if expected is not None:
            expected_values = [s.value for s in expected]
            query += f" AND status IN ({', '.join('?' for _ in expected_values)})"
            params.extend(expected_values)

        with self._scope(conn) as c:
            cursor = c.execute(query, params)
        return cursor.rowcount == 1

    def claim_reminder(
        self,
        case_id: str,
        threshold: ReminderThreshold,
        notifications: Iterable[NotificationRecord] = (),
        schedule_version: Optional[int] = None,
    ) -> bool:
        """
        Atomically flip one reminder flag false -> true.

        The outbox rows are written in the same transaction only when the
        flip succeeded, so a lost race enqueues nothing. With
        ``schedule_version`` the flip also fails if the case was rescheduled
        after the caller read it.

        Returns:
            True if this caller won the flag
        """
        column = threshold.column
        query = f"UPDATE cases SET {column} = 1, updated_at = ? WHERE case_id = ? AND {column} = 0"
        params: list = [now_iso(), case_id]
        if schedule_version is not None:
            query += " AND schedule_version = ?"
            params.append(schedule_version)

        with self.transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount != 1:
                return False

            for record in notifications:
                self.enqueue_notification(record, conn=conn)
        return True

    def claim_war_room_open(
        self,
        case_id: str,
        notifications: Iterable[NotificationRecord] = (),
        schedule_version: Optional[int] = None,
    ) -> bool:
        """
        Atomically mark a case's war room as opened.

        Only a case in AWAITING_TRIAL moves to JOIN_TRIAL, in the same
        transaction. A case still open for applications keeps its status.

        Returns:
            True if this caller performed the transition
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE cases
                SET war_room_opened = 1,
                    updated_at = ?
                WHERE case_id = ?
                  AND war_room_opened = 0
                  AND status NOT IN (?, ?)
                  AND (? IS NULL OR schedule_version = ?)
                """,
                (
                    now_iso(),
                    case_id,
                    *TERMINAL_CASE_STATUSES,
                    schedule_version,
                    schedule_version,
                ),
            )
            if cursor.rowcount != 1:
                return False

            self.update_case_status(
                case_id,
                CaseStatus.JOIN_TRIAL,
                expected=[CaseStatus.AWAITING_TRIAL],
                conn=conn,
            )

            for record in notifications:
                self.enqueue_notification(record, conn=conn)
        return True

    def list_booked_slots(
        self,
        resource_pool: str,
        start_date: str,
        end_date: str,
    ) -> set[TimeSlot]:
        """Slots held by active cases in a pool between two dates, inclusive."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT scheduled_date, scheduled_time FROM cases
                WHERE resource_pool = ?
                  AND scheduled_date BETWEEN ? AND ?
                  AND status NOT IN (?, ?)
                """,
                (resource_pool, start_date, end_date, *TERMINAL_CASE_STATUSES),
            ).fetchall()

        return {TimeSlot(date=row["scheduled_date"], time=row["scheduled_time"]) for row in rows}

    # =========================================================================
    # Calendar Block Operations
    # =========================================================================

    def create_block(
        self,
        block: BlockedSlot,
        conn: Optional[sqlite3.Connection] = None,
    ) -> BlockedSlot:
        """
        Insert a calendar block.

        Raises:
            SlotUnavailableError: If the slot is already blocked in the pool
        """
        try:
            with self._scope(conn) as c:
                c.execute(
                    """
                    INSERT INTO blocked_slots
                    (block_id, resource_pool, blocked_date, blocked_time,
                     reason, blocked_by, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        block.block_id,
                        block.resource_pool,
                        block.slot.date,
                        block.slot.time,
                        block.reason,
                        block.blocked_by,
                        block.created_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            existing = self.find_block(block.resource_pool, block.slot, conn=conn)
            raise SlotUnavailableError(
                str(block.slot),
                block.resource_pool,
                block_id=existing.block_id if existing else None,
            ) from e
        return block

    def delete_block(self, block_id: str) -> bool:
        """
        Remove a calendar block.

        Returns:
            True if a block was deleted
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM blocked_slots WHERE block_id = ?",
                (block_id,),
            )
        return cursor.rowcount == 1

    def get_block(self, block_id: str) -> Optional[BlockedSlot]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM blocked_slots WHERE block_id = ?",
                (block_id,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_block(row)

    def find_block(
        self,
        resource_pool: str,
        slot: TimeSlot,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[BlockedSlot]:
        """Return the block on ``slot`` in ``resource_pool``, if any."""
        with self._reader(conn) as c:
            row = c.execute(
                """
                SELECT * FROM blocked_slots
                WHERE resource_pool = ? AND blocked_date = ? AND blocked_time = ?
                """,
                (resource_pool, slot.date, slot.time),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_block(row)

    def list_blocks(
        self,
        resource_pool: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[BlockedSlot]:
        """List blocks, earliest slot first, optionally filtered by pool and date range."""
        query = "SELECT * FROM blocked_slots WHERE 1=1"
        params: list = []
        if resource_pool is not None:
            query += " AND resource_pool = ?"
            params.append(resource_pool)
        if start_date is not None:
            query += " AND blocked_date >= ?"
            params.append(start_date)
        if end_date is not None:
            query += " AND blocked_date <= ?"
            params.append(end_date)

        with self._connection() as conn:
            rows = conn.execute(
                query + " ORDER BY blocked_date ASC, blocked_time ASC",
                params,
            ).fetchall()

        return [self._row_to_block(row) for row in rows]

    def _row_to_block(self, row: sqlite3.Row) -> BlockedSlot:
        return BlockedSlot(
            block_id=row["block_id"],
            resource_pool=row["resource_pool"],
            slot=TimeSlot(date=row["blocked_date"], time=row["blocked_time"]),
            reason=row["reason"],
            blocked_by=row["blocked_by"],
            created_at=row["created_at"],
        )

    # =========================================================================
    # Juror Application Operations
    # =========================================================================

    def create_application(self, application: JurorApplication) -> JurorApplication:
        """
        Insert a juror application.

        Raises:
            NotFoundError: If the case does not exist
            ValidationError: If the juror already applied to the case
        """
        try:
            with self.transaction() as conn:
                if self.get_case(application.case_id, conn=conn) is None:
                    raise NotFoundError("Case", application.case_id)
                conn.execute(
                    """
                    INSERT INTO juror_applications
                    (application_id, case_id, juror_id, status, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        application.application_id,
                        application.case_id,
                        application.juror_id,
                        application.status.value,
                        application.created_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(
                f"Juror {application.juror_id} already applied to case {application.case_id}"
            ) from e
        return application

    def list_applications(
        self,
        case_id: str,
        status: Optional[ApplicationStatus] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[JurorApplication]:
        """List applications for a case, oldest first."""
        query = "SELECT * FROM juror_applications WHERE case_id = ?"
        params: list = [case_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)

        with self._reader(conn) as c:
            rows = c.execute(query + " ORDER BY created_at ASC", params).fetchall()

        return [
            JurorApplication(
                application_id=row["application_id"],
                case_id=row["case_id"],
                juror_id=row["juror_id"],
                status=ApplicationStatus(row["status"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def delete_applications_for_case(self, case_id: str, conn: sqlite3.Connection) -> int:
        """Delete every application (any status) for a case. Returns row count."""
        cursor = conn.execute(
            "DELETE FROM juror_applications WHERE case_id = ?",
            (case_id,),
        )
        return cursor.rowcount

    # =========================================================================
    # Negotiation Operations
    # =========================================================================

    def create_negotiation(
        self,
        request: NegotiationRequest,
        conn: Optional[sqlite3.Connection] = None,
    ) -> NegotiationRequest:
        """
        Insert a PENDING negotiation.

        Raises:
            DuplicatePendingRequestError: If the case already has one pending
        """
        variant = request.variant
        attorney = variant if isinstance(variant, AttorneyInitiated) else None
        admin = variant if isinstance(variant, AdminInitiated) else None

        try:
            with self._scope(conn) as c:
                c.execute(
                    """
                    INSERT INTO negotiation_requests
                    (request_id, case_id, kind, status, attorney_id,
                     new_scheduled_date, new_scheduled_time, reason, attorney_comments,
                     proposed_by, offered_slots, selected_slot,
                     original_scheduled_date, original_scheduled_time,
                     admin_id, admin_comments, responded_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        request.request_id,
                        request.case_id,
                        request.kind.value,
                        request.status.value,
                        attorney.attorney_id if attorney else None,
                        attorney.new_slot.date if attorney else None,
                        attorney.new_slot.time if attorney else None,
                        attorney.reason if attorney else None,
                        attorney.attorney_comments if attorney else None,
                        admin.proposed_by if admin else None,
                        json.dumps([s.to_dict() for s in admin.offered_slots]) if admin else None,
                        None,
                        request.original_slot.date,
                        request.original_slot.time,
                        request.admin_id,
                        request.admin_comments,
                        request.responded_at,
                        request.created_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            if "negotiation_requests.case_id" in str(e) or "ux_negotiation_pending" in str(e):
                existing = self.get_pending_negotiation(request.case_id)
                raise DuplicatePendingRequestError(
                    request.case_id,
                    existing.request_id if existing else None,
                ) from e
            raise

        return request

    def get_negotiation(
        self,
        request_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[NegotiationRequest]:
        """Get a negotiation by ID."""
        with self._reader(conn) as c:
            row = c.execute(
                "SELECT * FROM negotiation_requests WHERE request_id = ?",
                (request_id,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_negotiation(row)

    def get_pending_negotiation(
        self,
        case_id: str,
        kind: Optional[NegotiationKind] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[NegotiationRequest]:
        """Get the pending negotiation for a case, optionally of one kind."""
        query = "SELECT * FROM negotiation_requests WHERE case_id = ? AND status = ?"
        params: list = [case_id, NegotiationStatus.PENDING.value]
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind.value)

        with self._reader(conn) as c:
            row = c.execute(query, params).fetchone()

        if row is None:
            return None
        return self._row_to_negotiation(row)

    def list_negotiations(
        self,
        status: Optional[NegotiationStatus] = None,
        case_id: Optional[str] = None,
        attorney_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[NegotiationRequest]:
        """List negotiations, oldest first, filtered by any given field."""
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("nr.status = ?")
            params.append(status.value)
        if case_id is not None:
            clauses.append("nr.case_id = ?")
            params.append(case_id)
        if attorney_id is not None:
            clauses.append("c.attorney_id = ?")
            params.append(attorney_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT nr.* FROM negotiation_requests nr
                INNER JOIN cases c ON c.case_id = nr.case_id
                {where}
                ORDER BY nr.created_at ASC
                LIMIT ?
                """,
                params,
            ).fetchall()

        return [self._row_to_negotiation(row) for row in rows]

    def _row_to_negotiation(self, row: sqlite3.Row) -> NegotiationRequest:
        kind = NegotiationKind(row["kind"])
        if kind == NegotiationKind.ATTORNEY_INITIATED:
            variant = AttorneyInitiated(
                attorney_id=row["attorney_id"],
                new_slot=TimeSlot(
                    date=row["new_scheduled_date"],
                    time=row["new_scheduled_time"],
                ),
                reason=row["reason"],
                attorney_comments=row["attorney_comments"],
            )
        else:
            selected = json.loads(row["selected_slot"]) if row["selected_slot"] else None
            variant = AdminInitiated(
                proposed_by=row["proposed_by"],
                offered_slots=tuple(
                    TimeSlot(date=s["date"], time=s["time"])
                    for s in json.loads(row["offered_slots"] or "[]")
                ),
                selected_slot=TimeSlot(**selected) if selected else None,
            )

        return NegotiationRequest(
            request_id=row["request_id"],
            case_id=row["case_id"],
            variant=variant,
            original_slot=TimeSlot(
                date=row["original_scheduled_date"],
                time=row["original_scheduled_time"],
            ),
            status=NegotiationStatus(row["status"]),
            admin_id=row["admin_id"],
            admin_comments=row["admin_comments"],
            responded_at=row["responded_at"],
            created_at=row["created_at"],
        )

    def resolve_negotiation(
        self,
        request_id: str,
        status: NegotiationStatus,
        conn: sqlite3.Connection,
        admin_id: Optional[str] = None,
        admin_comments: Optional[str] = None,
        selected_slot: Optional[TimeSlot] = None,
    ) -> NegotiationRequest:
        """
        Atomically move a negotiation PENDING -> ``status``.

        Raises:
            NotFoundError: If the request does not exist
            AlreadyResolvedError: If it is no longer PENDING
        """
        cursor = conn.execute(
            """
            UPDATE negotiation_requests
            SET status = ?,
                admin_id = COALESCE(?, admin_id),
                admin_comments = ?,
                selected_slot = ?,
                responded_at = ?
            WHERE request_id = ? AND status = ?
            """,
            (
                status.value,
                admin_id,
                admin_comments,
                json.dumps(selected_slot.to_dict()) if selected_slot else None,
                now_iso(),
                request_id,
                NegotiationStatus.PENDING.value,
            ),
        )

        if cursor.rowcount == 0:
            current = self.get_negotiation(request_id, conn=conn)
            if current is None:
                raise NotFoundError("RescheduleRequest", request_id)
            raise AlreadyResolvedError(request_id, current.status.value)

        return self.get_negotiation(request_id, conn=conn)

    # =========================================================================
    # Notification Outbox
    # =========================================================================

    def enqueue_notification(
        self,
        record: NotificationRecord,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """
        Insert an outbox row unless its dedupe key already exists.

        Returns:
            True if a new row was written
        """
        with self._scope(conn) as c:
            cursor = c.execute(
                """
                INSERT OR IGNORE INTO notifications
                (notification_id, recipient_kind, recipient_id, case_id, template_id,
                 payload, dedupe_key, status, attempts, last_error, created_at, sent_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.notification_id,
                    record.recipient_kind.value,
                    record.recipient_id,
                    record.case_id,
                    record.template_id,
                    json.dumps(record.payload),
                    record.dedupe_key,
                    record.status.value,
                    record.attempts,
                    record.last_error,
                    record.created_at,
                    record.sent_at,
                ),
            )
        return cursor.rowcount == 1

    def get_notification(self, notification_id: str) -> Optional[NotificationRecord]:
        """Get an outbox row by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_notification(row)

    def get_notification_by_key(self, dedupe_key: str) -> Optional[NotificationRecord]:
        """Get an outbox row by dedupe key."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM notifications WHERE dedupe_key = ?",
                (dedupe_key,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_notification(row)

    def list_notifications(
        self,
        case_id: Optional[str] = None,
        status: Optional[NotificationStatus] = None,
        template_id: Optional[str] = None,
        limit: int = 500,
    ) -> list[NotificationRecord]:
        """List outbox rows, oldest first."""
        clauses = []
        params: list = []
        if case_id is not None:
            clauses.append("case_id = ?")
            params.append(case_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if template_id is not None:
            clauses.append("template_id = ?")
            params.append(template_id)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM notifications {where} ORDER BY created_at ASC, rowid ASC LIMIT ?",
                params,
            ).fetchall()

        return [self._row_to_notification(row) for row in rows]

    def _row_to_notification(self, row: sqlite3.Row) -> NotificationRecord:
        return NotificationRecord(
            notification_id=row["notification_id"],
            recipient_kind=RecipientKind(row["recipient_kind"]),
            recipient_id=row["recipient_id"],
            case_id=row["case_id"],
            template_id=row["template_id"],
            payload=json.loads(row["payload"]),
            dedupe_key=row["dedupe_key"],
            status=NotificationStatus(row["status"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            sent_at=row["sent_at"],
        )

    def claim_notification(self, notification_id: str) -> bool:
        """
        Atomically move an outbox row PENDING -> SENDING.

        Only the claimant may call the gateway for this row.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET status = ? WHERE notification_id = ? AND status = ?",
                (
                    NotificationStatus.SENDING.value,
                    notification_id,
                    NotificationStatus.PENDING.value,
                ),
            )
        return cursor.rowcount == 1

    def finish_notification(
        self,
        notification_id: str,
        status: NotificationStatus,
        attempts: int,
        last_error: Optional[str] = None,
    ) -> None:
        """Record the outcome of a claimed send."""
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE notifications
                SET status = ?, attempts = ?, last_error = ?, sent_at = ?
                WHERE notification_id = ? AND status = ?
                """,
                (
                    status.value,
                    attempts,
                    last_error,
                    now_iso() if status == NotificationStatus.DELIVERED else None,
                    notification_id,
                    NotificationStatus.SENDING.value,
                ),
            )

    def abandon_sending_notifications(self) -> int:
        """Mark rows left SENDING by a crash as ABANDONED. Returns row count."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE notifications SET status = ?, last_error = ? WHERE status = ?",
                (
                    NotificationStatus.ABANDONED.value,
                    "abandoned after restart",
                    NotificationStatus.SENDING.value,
                ),
            )
        return cursor.rowcount

    def count_notifications_by_status(self) -> dict[str, int]:
        """Outbox row counts keyed by status value."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM notifications GROUP BY status"
            ).fetchall()

        counts = {s.value: 0 for s in NotificationStatus}
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts
