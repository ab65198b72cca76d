"""Parsing of the reset strings shown on the usage page.

The page describes when a quota window refills in one of two shapes:

  relative:  "in 2 hr 30 min", "in 1 hour", "in 45 min"
  absolute:  "Thu 10:00 AM"  (next future occurrence of that weekday/time)

Each shape is a small grammar function; ``parse_reset_time`` tries them in
order and returns the first hit. New page formats get a new grammar in
``GRAMMARS`` without touching reset detection.
"""

import logging
import re
from datetime import datetime, timedelta, tzinfo
from typing import Callable, Optional

from claude_monitor.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

_RELATIVE_RE = re.compile(
    r"\bin\s+(?:(\d+)\s*(?:hr|hour)s?)?\s*(?:(\d+)\s*min)?",
    re.IGNORECASE,
)

_ABSOLUTE_RE = re.compile(
    r"([A-Za-z]{3})[A-Za-z]*\s+(\d{1,2}):(\d{2})\s*(AM|PM)",
    re.IGNORECASE,
)

# Python's weekday(): Monday == 0
_WEEKDAYS = {"mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6}

Grammar = Callable[[str, datetime, tzinfo], Optional[datetime]]


def parse_relative(text: str, reference: datetime, tz: tzinfo) -> Optional[datetime]:
    """Relative form: reference + hours + minutes.

    >>> from datetime import timezone
    >>> ref = datetime(2024, 1, 1, tzinfo=timezone.utc)
    >>> parse_relative("Resets in 2 hr 30 min", ref, timezone.utc).isoformat()
    '2024-01-01T02:30:00+00:00'
    >>> parse_relative("Thu 10:00 AM", ref, timezone.utc) is None
    True
    """
    for match in _RELATIVE_RE.finditer(text):
        hours, minutes = match.group(1), match.group(2)
        if hours is None and minutes is None:
            continue
        return reference + timedelta(hours=int(hours or 0), minutes=int(minutes or 0))
    return None


def parse_absolute(text: str, reference: datetime, tz: tzinfo) -> Optional[datetime]:
    """Absolute form: next ``<weekday> HH:MM AM|PM`` strictly after reference.

    Wall-clock fields are read in ``tz``. If the weekday is today and the time
    has already passed (or is now), the result rolls forward a week.

    >>> from datetime import timezone
    >>> wed = datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc)
    >>> parse_absolute("Wed 09:00 AM", wed, timezone.utc).isoformat()
    '2024-01-10T09:00:00+00:00'
    >>> parse_absolute("Thu 10:00 AM", wed, timezone.utc).isoformat()
    '2024-01-04T10:00:00+00:00'
    """
    match = _ABSOLUTE_RE.search(text)
    if not match:
        return None

    target_day = _WEEKDAYS.get(match.group(1).lower())
    if target_day is None:
        return None

    hour = int(match.group(2))
    minute = int(match.group(3))
    if hour > 12 or minute > 59:
        return None
    ampm = match.group(4).upper()
    if ampm == "PM" and hour != 12:
        hour += 12
    elif ampm == "AM" and hour == 12:
        hour = 0

    local_ref = reference.astimezone(tz)
    days_until = (target_day - local_ref.weekday()) % 7
    candidate = local_ref.replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate += timedelta(days=days_until)
    if candidate <= local_ref:
        candidate += timedelta(days=7)
    return candidate


GRAMMARS: tuple[Grammar, ...] = (parse_relative, parse_absolute)


def parse_reset_time(
    text: Optional[str],
    reference: datetime | str,
    tz: Optional[tzinfo] = None,
) -> Optional[datetime]:
    """Turn a reset string into the instant it describes.

    Args:
        text: reset string as captured from the page (may be None)
        reference: instant the string was observed (datetime or ISO string)
        tz: zone for wall-clock strings; defaults to the reference's own zone

    Returns:
        Aware datetime, or None when no grammar matches.

    >>> parse_reset_time("in 2 hr 30 min", "2024-01-01T00:00:00Z").isoformat()
    '2024-01-01T02:30:00+00:00'
    >>> parse_reset_time("sometime soon", "2024-01-01T00:00:00Z") is None
    True
    """
    if not text or not text.strip():
        return None
    if isinstance(reference, str):
        try:
            reference = parse_timestamp(reference)
        except ValueError:
            logger.debug("Unparseable reference timestamp %r", reference)
            return None
    zone = tz or reference.tzinfo

    for grammar in GRAMMARS:
        result = grammar(text, reference, zone)
        if result is not None:
            return result

    logger.debug("No reset grammar matched %r", text[:100])
    return None
