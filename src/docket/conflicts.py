"""
Schedule Conflict Resolver.

Decides whether a candidate slot is free in a resource pool. A slot is taken
when an admin has blocked it, or when any other non-terminal case in the
same pool sits at exactly that (date, time). Nothing is cached: every check
reads the store.

The check is advisory. The partial unique index on cases is what guarantees
no double booking when two writers race past the check.

Calendar:
- Admins block and unblock single slots (weekdays, 09:00-17:00 only)
- ``available_slots`` lists the free half-hour slots of a date range
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from .entities import BlockedSlot, TimeSlot
from .errors import NotFoundError, SlotUnavailableError, ValidationError
from .persistence import CaseLifecycleStore


logger = logging.getLogger(__name__)

# Bookable calendar: weekdays, half-hour steps, both ends inclusive
BUSINESS_DAY_START = time(9, 0)
BUSINESS_DAY_END = time(17, 0)
SLOT_STEP_MINUTES = 30
MAX_RANGE_DAYS = 90


@dataclass(frozen=True)
class SlotAvailability:
    available: bool
    conflicting_case_id: Optional[str] = None
    block_id: Optional[str] = None


def parse_calendar_date(value: str) -> date:
    """
    Raises:
        ValidationError: If ``value`` is not YYYY-MM-DD
    """
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD") from e


def is_business_slot(slot: TimeSlot) -> bool:
    """True for a weekday slot between 09:00 and 17:00."""
    local = slot.local_datetime()
    return local.weekday() < 5 and BUSINESS_DAY_START <= local.time() <= BUSINESS_DAY_END


class ScheduleConflictResolver:
    """Slot availability checks and calendar blocks against the current store state."""

    def __init__(self, store: CaseLifecycleStore):
        self.store = store

    def check_available(
        self,
        candidate_slot: TimeSlot,
        resource_pool: str,
        exclude_case_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> SlotAvailability:
        """
        Check a slot in a pool.

        Args:
            candidate_slot: Slot to check
            resource_pool: Jurisdiction the slot belongs to
            exclude_case_id: Case being moved; its own slot never conflicts
            conn: Join an open transaction instead of reading separately

        Returns:
            SlotAvailability with the block or the occupying case when
            unavailable
        """
        block = self.store.find_block(resource_pool, candidate_slot, conn=conn)
        if block is not None:
            logger.debug(
                f"Slot {candidate_slot} in {resource_pool} blocked ({block.block_id})"
            )
            return SlotAvailability(available=False, block_id=block.block_id)

        holder = self.store.find_case_in_slot(
            resource_pool,
            candidate_slot,
            exclude_case_id=exclude_case_id,
            conn=conn,
        )
        if holder is None:
            return SlotAvailability(available=True)

        logger.debug(
            f"Slot {candidate_slot} in {resource_pool} held by case {holder.case_id}"
        )
        return SlotAvailability(available=False, conflicting_case_id=holder.case_id)

    def require_available(
        self,
        candidate_slot: TimeSlot,
        resource_pool: str,
        exclude_case_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        """
        Raises:
            SlotUnavailableError: If the slot is taken or blocked
        """
        availability = self.check_available(
            candidate_slot, resource_pool, exclude_case_id=exclude_case_id, conn=conn
        )
        if not availability.available:
            raise SlotUnavailableError(
                str(candidate_slot),
                resource_pool,
                availability.conflicting_case_id,
                block_id=availability.block_id,
            )

    # =========================================================================
    # Calendar
    # =========================================================================

    def block(
        self,
        resource_pool: str,
        slot: TimeSlot,
        reason: Optional[str] = None,
        blocked_by: Optional[str] = None,
    ) -> BlockedSlot:
        """
        Take a free slot off the calendar.

        Raises:
            ValidationError: No pool, or the slot is outside business hours
            SlotUnavailableError: Slot is already blocked or held by a case
        """
        if not resource_pool:
            raise ValidationError("resource_pool is required")
        if not is_business_slot(slot):
            raise ValidationError(
                f"Slot {slot} is outside the bookable calendar "
                f"(weekdays {BUSINESS_DAY_START:%H:%M}-{BUSINESS_DAY_END:%H:%M})"
            )

        block = BlockedSlot.create(
            resource_pool=resource_pool,
            slot=slot,
            reason=reason.strip() if reason and reason.strip() else None,
            blocked_by=blocked_by,
        )
        with self.store.transaction() as conn:
            self.require_available(slot, resource_pool, conn=conn)
            self.store.create_block(block, conn=conn)

        logger.info(f"Slot {slot} blocked in {resource_pool} ({block.block_id})")
        return block

    def unblock(self, block_id: str) -> BlockedSlot:
        """
        Put a blocked slot back on the calendar.

        Raises:
            NotFoundError: No such block
        """
        block = self.store.get_block(block_id)
        if block is None or not self.store.delete_block(block_id):
            raise NotFoundError("BlockedSlot", block_id)

        logger.info(f"Slot {block.slot} unblocked in {block.resource_pool} ({block_id})")
        return block

    def list_blocks(
        self,
        resource_pool: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[BlockedSlot]:
        for value in (start_date, end_date):
            if value is not None:
                parse_calendar_date(value)
        return self.store.list_blocks(resource_pool, start_date, end_date)

    def available_slots(
        self,
        resource_pool: str,
        start_date: str,
        end_date: str,
    ) -> list[TimeSlot]:
        """
        Free slots of a pool between two dates, inclusive.

        Weekdays only, every 30 minutes from 09:00 through 17:00, minus
        blocked slots and slots held by active cases.

        Raises:
            ValidationError: Malformed dates, start after end, or a range
                longer than 90 days
        """
        start = parse_calendar_date(start_date)
        end = parse_calendar_date(end_date)
        if start > end:
            raise ValidationError("start_date must not be after end_date")
        if (end - start).days > MAX_RANGE_DAYS:
            raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")

        taken = self.store.list_booked_slots(resource_pool, start_date, end_date)
        taken.update(b.slot for b in self.store.list_blocks(resource_pool, start_date, end_date))

        step = timedelta(minutes=SLOT_STEP_MINUTES)
        free = []
        day = start
        while day <= end:
            if day.weekday() < 5:
                moment = datetime.combine(day, BUSINESS_DAY_START)
                last = datetime.combine(day, BUSINESS_DAY_END)
                while moment <= last:
                    slot = TimeSlot(date=day.isoformat(), time=moment.strftime("%H:%M:%S"))
                    if slot not in taken:
                        free.append(slot)
                    moment += step
            day += timedelta(days=1)

        return free
