"""Derived statistics over stored readings, as consumed by the chart views."""

from typing import Iterable, Optional

from pydantic import BaseModel

from claude_monitor.database import Reading


class UsagePoint(BaseModel):
    """One chart point on the weekly all-models series."""

    reading_id: Optional[int] = None
    timestamp: str
    weekly_percent: float
    delta: float = 0.0
    is_synthetic: bool = False


def usage_points(readings: Iterable[Reading]) -> list[UsagePoint]:
    """Chronological weekly series with per-point consumption.

    Accepts readings in any order (``UsageStore.history`` returns newest
    first). Readings without a weekly percent are left out. A point's delta
    is the increase since the previous point; drops count as zero, and
    synthetic reset points never count as consumption.

    >>> rs = [
    ...     Reading(id=1, account_id="a", timestamp="2024-01-01T00:00:00.000Z", weekly_all_percent=10),
    ...     Reading(id=2, account_id="a", timestamp="2024-01-01T01:00:00.000Z", weekly_all_percent=25),
    ... ]
    >>> [p.delta for p in usage_points(rs)]
    [0.0, 15.0]
    """
    ordered = sorted(
        (r for r in readings if r.weekly_all_percent is not None),
        key=lambda r: (r.timestamp, r.id or 0),
    )

    points: list[UsagePoint] = []
    previous = None
    for reading in ordered:
        delta = 0.0
        if previous is not None and not reading.is_synthetic:
            delta = max(0.0, reading.weekly_all_percent - previous)
        points.append(
            UsagePoint(
                reading_id=reading.id,
                timestamp=reading.timestamp,
                weekly_percent=reading.weekly_all_percent,
                delta=delta,
                is_synthetic=reading.is_synthetic,
            )
        )
        previous = reading.weekly_all_percent
    return points


def total_consumed(points: Iterable[UsagePoint]) -> float:
    return sum(p.delta for p in points)


def reset_count(points: Iterable[UsagePoint]) -> int:
    """Number of reset edges (synthetic zero points) in the series."""
    return sum(1 for p in points if p.is_synthetic and p.weekly_percent == 0)
