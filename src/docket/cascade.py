"""
Juror Application Cascade.

When a case moves to a new slot every juror application for it is void:
jurors applied for the old date. The cascade deletes them all (approved and
pending alike), puts the case back on the job board and tells each affected
juror.

Idempotent per ``event_id``: a second run finds nothing to delete, and the
notification dedupe keys already exist, so nobody is notified twice.
"""

import logging
import sqlite3
from typing import Optional

from .entities import (
    CascadeResult,
    CaseStatus,
    NotificationRecord,
    RecipientKind,
)
from .errors import NotFoundError
from .notifications import TEMPLATE_CASE_RESCHEDULED
from .persistence import CaseLifecycleStore


logger = logging.getLogger(__name__)

# Terminal cases keep their status through a reschedule
REOPENABLE_STATUSES = (
    CaseStatus.OPEN_FOR_APPLICATIONS,
    CaseStatus.AWAITING_TRIAL,
    CaseStatus.JOIN_TRIAL,
)


def juror_dedupe_key(case_id: str, event_id: str, juror_id: str) -> str:
    return f"{TEMPLATE_CASE_RESCHEDULED}:{case_id}:{event_id}:{juror_id}"


class JurorApplicationCascade:
    """Purges applications and reopens a case after a reschedule."""

    def __init__(self, store: CaseLifecycleStore):
        self.store = store

    def purge_and_reopen(
        self,
        case_id: str,
        event_id: str,
        conn: Optional[sqlite3.Connection] = None,
        payload: Optional[dict] = None,
    ) -> CascadeResult:
        """
        Delete all applications for a case and reopen it for applications.

        Args:
            case_id: Case that was rescheduled
            event_id: Identifies the reschedule (the negotiation request ID)
            conn: Approval transaction to join; a new one is opened if None
            payload: Extra fields for the juror notification

        Returns:
            CascadeResult; the notifications in it are committed with ``conn``
            and must be delivered only after that commit

        Raises:
            NotFoundError: If the case does not exist
        """
        if conn is None:
            with self.store.transaction() as own:
                return self.purge_and_reopen(case_id, event_id, conn=own, payload=payload)

        case = self.store.get_case(case_id, conn=conn)
        if case is None:
            raise NotFoundError("Case", case_id)

        applications = self.store.list_applications(case_id, conn=conn)
        affected = tuple(dict.fromkeys(a.juror_id for a in applications))
        deleted = self.store.delete_applications_for_case(case_id, conn=conn)

        self.store.update_case_status(
            case_id,
            CaseStatus.OPEN_FOR_APPLICATIONS,
            expected=REOPENABLE_STATUSES,
            conn=conn,
        )

        notifications = []
        for juror_id in affected:
            record = NotificationRecord.create(
                recipient_kind=RecipientKind.JUROR,
                recipient_id=juror_id,
                template_id=TEMPLATE_CASE_RESCHEDULED,
                dedupe_key=juror_dedupe_key(case_id, event_id, juror_id),
                case_id=case_id,
                payload={
                    "case_id": case_id,
                    "title": case.title,
                    "event_id": event_id,
                    **(payload or {}),
                },
            )
            if self.store.enqueue_notification(record, conn=conn):
                notifications.append(record)

        if deleted:
            logger.info(
                f"Cascade for case {case_id} (event {event_id}): "
                f"deleted {deleted} applications, notifying {len(notifications)} jurors"
            )

        return CascadeResult(
            case_id=case_id,
            deleted_applications=deleted,
            affected_juror_ids=affected,
            notifications=tuple(notifications),
        )
