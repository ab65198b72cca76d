"""ISO-8601 helpers.

Every timestamp we store uses the browser's ``Date.toISOString()`` shape
(``2024-01-01T00:00:00.000Z``) so that string order in SQLite matches
chronological order.
"""

from datetime import datetime, timezone


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware datetime.

    Naive values are taken as UTC. A trailing ``Z`` is accepted on every
    Python version we support.

    >>> parse_timestamp("2024-01-01T02:30:00Z").isoformat()
    '2024-01-01T02:30:00+00:00'
    >>> parse_timestamp("2024-01-01T02:30:00").tzinfo is timezone.utc
    True
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    """Render a datetime in canonical UTC millisecond form.

    >>> format_timestamp(datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc))
    '2024-01-01T02:30:00.000Z'
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def normalize_timestamp(value: str | None) -> str:
    """Canonicalize an incoming timestamp, defaulting to now.

    Raises:
        ValueError: if the value isn't ISO-8601

    >>> normalize_timestamp("2024-03-05T10:00:00+02:00")
    '2024-03-05T08:00:00.000Z'
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return utc_now()
    if not isinstance(value, str):
        raise ValueError(f"Invalid timestamp: {value!r}")
    try:
        return format_timestamp(parse_timestamp(value))
    except ValueError:
        raise ValueError(f"Invalid timestamp: {value!r}") from None


def utc_now() -> str:
    return format_timestamp(datetime.now(timezone.utc))
