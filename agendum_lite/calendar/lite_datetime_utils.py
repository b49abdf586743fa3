"""DateTime parsing utilities for calendar event processing - agendum_lite.

Parses the heterogeneous start/end strings emitted by the ICS converter
(already-normalized ISO strings as well as compact ``YYYYMMDD[THHMM[SS]][Z]``
values) into aware datetimes, and provides the local-time helpers the
filter pipeline relies on.
"""

import logging
import os
import re
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_COMPACT_ICS_RE = re.compile(
    r"^(\d{4})(\d{2})(\d{2})(?:T(\d{2})(\d{2})(\d{2})?)?(Z)?$", re.IGNORECASE
)


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Resolve an IANA timezone name.

    Args:
        name: IANA name such as ``Europe/Paris``; empty means host local zone

    Returns:
        ZoneInfo instance, or None when the name is empty or unknown
    """
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; falling back to host local time", name)
        return None


def _localize(naive: datetime, tz: Optional[tzinfo]) -> datetime:
    """Attach the local zone to a naive wall-clock datetime."""
    if tz is not None:
        return naive.replace(tzinfo=tz)
    return naive.astimezone()


def parse_ics_datetime(raw: Optional[str], tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Parse an ICS-style date/time string into an aware datetime.

    Already-normalized ISO strings are accepted as-is. Otherwise ``-`` and ``:``
    are stripped and the compact form ``YYYYMMDD[THHMM[SS]][Z]`` is matched, in
    any letter case; a trailing ``Z`` means UTC, anything else is local wall-clock
    time. Missing time-of-day fields default to midnight.

    Args:
        raw: String to parse
        tz: Local zone for naive values (host zone when None)

    Returns:
        Aware datetime, or None if the value cannot be parsed

    Examples:
        >>> parse_ics_datetime("20240115T090000Z")
        datetime.datetime(2024, 1, 15, 9, 0, tzinfo=datetime.timezone.utc)
    """
    if not raw:
        return None
    value = raw.strip()
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = None
    if parsed is not None:
        if parsed.tzinfo is None:
            return _localize(parsed, tz)
        return parsed

    match = _COMPACT_ICS_RE.match(value.replace("-", "").replace(":", ""))
    if not match:
        return None

    year, month, day, hour, minute, second, zulu = match.groups()
    try:
        naive = datetime(
            int(year),
            int(month),
            int(day),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
        )
    except ValueError:
        logger.debug("Out-of-range date fields in %r", raw)
        return None

    if zulu:
        return naive.replace(tzinfo=UTC)
    return _localize(naive, tz)


def to_local(dt: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Convert an aware datetime to the local zone (host zone when tz is None)."""
    if tz is not None:
        return dt.astimezone(tz)
    return dt.astimezone()


def local_date_key(dt: datetime, tz: Optional[tzinfo] = None) -> date:
    """Return the calendar date of ``dt`` in local time, not UTC."""
    return to_local(dt, tz).date()


def minutes_of_day(dt: datetime, tz: Optional[tzinfo] = None) -> int:
    """Return minutes since local midnight."""
    local = to_local(dt, tz)
    return local.hour * 60 + local.minute


def iso_weekday(dt: datetime, tz: Optional[tzinfo] = None) -> int:
    """Return the local ISO weekday, 1=Monday..7=Sunday."""
    return to_local(dt, tz).isoweekday()


def now_utc() -> datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via AGENDUM_TEST_TIME environment variable.
    Format: ISO 8601 datetime string (e.g., "2025-10-27T08:20:00+02:00")
    """
    test_time = os.environ.get("AGENDUM_TEST_TIME")
    if test_time:
        try:
            from dateutil import parser as date_parser

            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(UTC)
            # Assume naive datetime is already UTC
            return dt.replace(tzinfo=UTC)
        except ValueError as e:
            logger.warning("Failed to parse AGENDUM_TEST_TIME=%r: %s", test_time, e)

    return datetime.now(UTC)


def time_remaining(
    last_event: Optional[datetime], cooldown: timedelta, now: datetime
) -> timedelta:
    """Return how long until ``cooldown`` has elapsed since ``last_event``.

    Args:
        last_event: When the guarded action last happened (None if never)
        cooldown: Required gap between two actions
        now: Current instant

    Returns:
        Remaining wait, ``timedelta(0)`` when the action is allowed now
    """
    if last_event is None:
        return timedelta(0)
    remaining = last_event + cooldown - now
    if remaining <= timedelta(0):
        return timedelta(0)
    return remaining
