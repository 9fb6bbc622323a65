"""Wall-clock to absolute timestamp resolution.

Meeting forms submit a calendar date, HH:MM start/end times and an IANA
timezone label. These helpers turn that triple into offset-qualified ISO
8601 strings (``2024-03-10T23:30:00+05:30``) that Google Calendar and
Postgres both accept unambiguously.

An end time that sorts before the start time means the meeting crosses
midnight, so the end lands on the following day.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from src.crm.meetings.errors import MeetingValidationError

logger = structlog.get_logger(__name__)

DEFAULT_FALLBACK_OFFSET = "+05:30"

# Used only when the zone database cannot resolve a label
FALLBACK_OFFSETS: dict[str, str] = {
    "Asia/Kolkata": "+05:30",
    "Asia/Calcutta": "+05:30",
    "UTC": "+00:00",
    "GMT": "+00:00",
    "Europe/London": "+00:00",
    "America/New_York": "-05:00",
    "America/Los_Angeles": "-08:00",
}


def _load_zone(timezone: str) -> tzinfo | None:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def resolve_timestamp(
    day: date | str,
    time: str,
    timezone: str,
    start_time_hint: str | None = None,
) -> str:
    """Build an offset-qualified timestamp for a wall-clock time in ``timezone``.

    Args:
        day: Calendar date (``date`` or ``YYYY-MM-DD``).
        time: Wall-clock time as ``HH:MM``.
        timezone: IANA zone label, e.g. ``Asia/Kolkata``.
        start_time_hint: The meeting's start time. When ``time`` sorts before
            it, ``time`` is an end time past midnight and the date advances
            by one day.

    Returns:
        ``YYYY-MM-DDTHH:MM:SS±HH:MM``. Never raises for timezone problems:
        unknown zones fall back to a static offset table.
    """
    if isinstance(day, str):
        day = date.fromisoformat(day)
    if start_time_hint and time < start_time_hint:
        day = day + timedelta(days=1)

    hour, minute = (int(part) for part in time.split(":")[:2])
    naive = datetime(day.year, day.month, day.day, hour, minute)

    zone = _load_zone(timezone)
    if zone is not None:
        return naive.replace(tzinfo=zone).isoformat()

    offset = FALLBACK_OFFSETS.get(timezone, DEFAULT_FALLBACK_OFFSET)
    logger.warning("timezone_fallback_offset", timezone=timezone, offset=offset)
    return f"{naive.isoformat()}{offset}"


def resolve_window(
    day: date | str,
    start_time: str,
    end_time: str,
    timezone: str,
) -> tuple[str, str]:
    """Resolve a meeting's start and end, rolling the end past midnight if needed.

    Raises:
        MeetingValidationError: If the window has zero or negative length.
    """
    start = resolve_timestamp(day, start_time, timezone)
    end = resolve_timestamp(day, end_time, timezone, start_time_hint=start_time)
    if parse_timestamp(end) <= parse_timestamp(start):
        raise MeetingValidationError("Meeting end time must be after its start time")
    return start, end


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp produced by resolve_timestamp into an aware datetime."""
    return datetime.fromisoformat(value)


def to_wall_clock(instant: datetime, timezone: str) -> tuple[date, str]:
    """Express an absolute instant as (date, ``HH:MM``) in ``timezone``.

    Used to fill in the parts of a schedule an update leaves out. Unknown
    zones use the same fallback offsets as resolve_timestamp.
    """
    zone = _load_zone(timezone)
    if zone is None:
        offset = FALLBACK_OFFSETS.get(timezone, DEFAULT_FALLBACK_OFFSET)
        zone = datetime.fromisoformat(f"2000-01-01T00:00:00{offset}").tzinfo
    local = instant.astimezone(zone)
    return local.date(), local.strftime("%H:%M")
