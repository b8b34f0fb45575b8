"""
UTC normalization helpers.

Case slots are stored as wall-clock date/time plus a fixed offset in minutes
east of UTC (e.g. -300 for US Eastern standard time). Every comparison in the
docket happens between timezone-aware UTC datetimes produced here.

Offsets are fixed: a case filed at -300 stays at -300 through a daylight
saving change. Jurisdiction defaults come from ``STATE_UTC_OFFSETS``.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ValidationError


# Standard-time offsets by state, in minutes east of UTC
STATE_UTC_OFFSETS = {
    # Eastern
    **{
        state: -300
        for state in (
            "Connecticut", "Delaware", "Florida", "Georgia", "Maine", "Maryland",
            "Massachusetts", "Michigan", "New Hampshire", "New Jersey", "New York",
            "North Carolina", "Ohio", "Pennsylvania", "Rhode Island",
            "South Carolina", "Vermont", "Virginia", "West Virginia",
        )
    },
    # Central
    **{
        state: -360
        for state in (
            "Alabama", "Arkansas", "Illinois", "Iowa", "Kansas", "Kentucky",
            "Louisiana", "Minnesota", "Mississippi", "Missouri", "Nebraska",
            "North Dakota", "Oklahoma", "South Dakota", "Tennessee", "Texas",
            "Wisconsin",
        )
    },
    # Mountain
    **{
        state: -420
        for state in (
            "Arizona", "Colorado", "Idaho", "Montana", "New Mexico", "Utah", "Wyoming",
        )
    },
    # Pacific
    **{state: -480 for state in ("California", "Nevada", "Oregon", "Washington")},
    "Alaska": -540,
    "Hawaii": -600,
}

# Real-world offsets span UTC-12:00 .. UTC+14:00
MIN_OFFSET_MINUTES = -12 * 60
MAX_OFFSET_MINUTES = 14 * 60


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as UTC ISO-8601 with a Z suffix."""
    return ensure_utc(dt).replace(tzinfo=None).isoformat() + "Z"


def now_iso() -> str:
    """Get current time as ISO format string."""
    return to_iso(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse an ISO string written by ``to_iso`` (or carrying an offset)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    return ensure_utc(dt)


def ensure_utc(dt: datetime) -> datetime:
    """
    Return ``dt`` converted to UTC.

    Raises:
        ValidationError: If ``dt`` is naive; unqualified local times are
            never compared
    """
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        raise ValidationError(f"Naive datetime {dt.isoformat()} has no UTC offset")
    return dt.astimezone(timezone.utc)


def validate_offset(offset_minutes: int) -> int:
    """Reject offsets outside the range any real zone uses."""
    if not isinstance(offset_minutes, int) or isinstance(offset_minutes, bool):
        raise ValidationError(f"Timezone offset must be an integer, got {offset_minutes!r}")
    if not MIN_OFFSET_MINUTES <= offset_minutes <= MAX_OFFSET_MINUTES:
        raise ValidationError(f"Timezone offset {offset_minutes} is out of range")
    return offset_minutes


def local_to_utc(local: datetime, offset_minutes: int) -> datetime:
    """
    Convert wall-clock time at a fixed offset to an aware UTC datetime.

    Args:
        local: Naive wall-clock datetime
        offset_minutes: Minutes east of UTC (negative for the Americas)

    Returns:
        Aware datetime in UTC
    """
    if local.tzinfo is not None:
        return ensure_utc(local)
    tz = timezone(timedelta(minutes=validate_offset(offset_minutes)))
    return local.replace(tzinfo=tz).astimezone(timezone.utc)


def offset_for_state(state: Optional[str], default: int = 0) -> int:
    """Fixed offset for a US state name; ``default`` when unknown."""
    if not state:
        return default
    return STATE_UTC_OFFSETS.get(state.strip().title(), default)
