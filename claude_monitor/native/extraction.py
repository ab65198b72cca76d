"""Pull usage fields out of the content script's ``data`` payload.

The content script has shipped several payload shapes over time, so each
field can come from more than one place. Extractors are pure functions tried
in order; a later extractor only fills fields the earlier ones left empty.

  1. flattened fields on ``data`` (sessionPercent, weeklyAllPercent, ...)
  2. the ``sections`` array ({type, percentUsed, resetTime})
  3. a "Resets in ..." phrase in ``rawText`` (session reset only)

``primaryPercent`` is never derived: it always comes from data.primaryPercent.
"""

import re
from typing import Any, Callable, Optional

from pydantic import BaseModel

_RAW_SESSION_RESET_RE = re.compile(
    r"Resets?\s+in\s+(\d+\s*(?:hr|hour|min|day)[^\n]*)",
    re.IGNORECASE,
)


class UsageFields(BaseModel):
    """Normalized usage values for one reading."""

    primary_percent: Optional[float] = None
    session_percent: Optional[float] = None
    weekly_all_percent: Optional[float] = None
    weekly_sonnet_percent: Optional[float] = None
    session_reset: Optional[str] = None
    weekly_reset: Optional[str] = None


def as_percent(value: Any) -> Optional[float]:
    """Coerce a percent value; anything non-numeric counts as not observed.

    >>> as_percent(42)
    42.0
    >>> as_percent("17.5")
    17.5
    >>> as_percent(None) is None, as_percent(True) is None, as_percent("n/a") is None
    (True, True, True)
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().rstrip("%"))
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def from_flat_fields(data: dict) -> dict:
    """Fields the current content script sends directly on ``data``.

    Session percent falls back to primaryPercent, matching older scripts that
    only reported the headline number.
    """
    session = as_percent(data.get("sessionPercent"))
    if session is None:
        session = as_percent(data.get("primaryPercent"))
    return {
        "session_percent": session,
        "weekly_all_percent": as_percent(data.get("weeklyAllPercent")),
        "weekly_sonnet_percent": as_percent(data.get("weeklySonnetPercent")),
        "session_reset": _as_text(data.get("sessionReset")),
        "weekly_reset": _as_text(data.get("weeklyReset")),
    }


def from_sections(data: dict) -> dict:
    """Weekly values from the ``sections`` array; first matching section wins.

    >>> from_sections({"sections": [
    ...     {"type": "all_models", "percentUsed": 40, "resetTime": "Thu 10:00 AM"},
    ...     {"type": "sonnet_only", "percentUsed": 12},
    ... ]})
    {'weekly_all_percent': 40.0, 'weekly_reset': 'Thu 10:00 AM', 'weekly_sonnet_percent': 12.0}
    """
    sections = data.get("sections")
    if not isinstance(sections, list):
        return {}

    found: dict = {}
    for section in sections:
        if not isinstance(section, dict):
            continue
        kind = section.get("type")
        if kind == "all_models" and "weekly_all_percent" not in found:
            found["weekly_all_percent"] = as_percent(section.get("percentUsed"))
            found["weekly_reset"] = _as_text(section.get("resetTime"))
        elif kind == "sonnet_only" and "weekly_sonnet_percent" not in found:
            found["weekly_sonnet_percent"] = as_percent(section.get("percentUsed"))
    return found


def from_raw_text(data: dict) -> dict:
    """Last resort: session reset phrase from the page text.

    >>> from_raw_text({"rawText": "Current session\\nResets in 3 hr 12 min\\n"})
    {'session_reset': 'in 3 hr 12 min'}
    """
    raw = data.get("rawText")
    if not isinstance(raw, str):
        return {}
    match = _RAW_SESSION_RESET_RE.search(raw)
    if not match:
        return {}
    return {"session_reset": "in " + match.group(1).strip()}


EXTRACTORS: tuple[Callable[[dict], dict], ...] = (
    from_flat_fields,
    from_sections,
    from_raw_text,
)


def extract_usage(data: dict) -> UsageFields:
    """Run the extractors in order and merge their results.

    >>> fields = extract_usage({"primaryPercent": 30, "weeklyAllPercent": 55})
    >>> fields.session_percent, fields.weekly_all_percent
    (30.0, 55.0)
    """
    merged: dict = {}
    for extractor in EXTRACTORS:
        for key, value in extractor(data).items():
            if value is not None and merged.get(key) is None:
                merged[key] = value
    return UsageFields(primary_percent=as_percent(data.get("primaryPercent")), **merged)
