"""Quota reset detection and synthetic chart points.

A reset shows up as a drop in the weekly all-models percentage between two
consecutive readings. When the previous reading carried a parseable reset
string we know roughly when the quota refilled, and we insert two synthetic
points there so the chart draws a vertical edge instead of a slow slope:

  t_reset        previous percentages (line climbs to the old level)
  t_reset + 1s   all zeros            (line drops to zero)

The same test runs live for each new reading and as an offline backfill over
the whole history table.
"""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Optional

from pydantic import BaseModel

from claude_monitor.config import DEFAULT_BACKFILL_WINDOW_SECONDS, DEFAULT_RESET_THRESHOLD
from claude_monitor.database import Reading, UsageStore
from claude_monitor.reset_time import parse_reset_time
from claude_monitor.timestamps import format_timestamp

logger = logging.getLogger(__name__)

ZERO_POINT_OFFSET = timedelta(seconds=1)


class ResetOutcome(BaseModel):
    """What reset handling did for one pair of readings."""

    reset_detected: bool = False
    reset_at: Optional[datetime] = None
    synthetic_inserted: int = 0


def is_reset(
    prev_percent: Optional[float],
    new_percent: Optional[float],
    threshold: float = DEFAULT_RESET_THRESHOLD,
) -> bool:
    """True when the weekly percentage dropped by more than ``threshold`` points.

    >>> is_reset(50, 45)
    False
    >>> is_reset(50, 44.9)
    True
    >>> is_reset(None, 0)
    False
    """
    if prev_percent is None or new_percent is None:
        return False
    return (prev_percent - new_percent) > threshold


def synthetic_points(prev: Reading, reset_at: datetime) -> list[Reading]:
    """Build the (old level, zero) pair marking a reset edge."""
    return [
        Reading(
            account_id=prev.account_id,
            timestamp=format_timestamp(reset_at),
            primary_percent=prev.primary_percent,
            session_percent=prev.session_percent,
            weekly_all_percent=prev.weekly_all_percent,
            weekly_sonnet_percent=prev.weekly_sonnet_percent,
            is_synthetic=True,
        ),
        Reading(
            account_id=prev.account_id,
            timestamp=format_timestamp(reset_at + ZERO_POINT_OFFSET),
            primary_percent=0,
            session_percent=0,
            weekly_all_percent=0,
            weekly_sonnet_percent=0,
            is_synthetic=True,
        ),
    ]


class ResetDetector:
    """Detects resets between readings and writes synthetic points to the store."""

    def __init__(
        self,
        store: UsageStore,
        threshold: float = DEFAULT_RESET_THRESHOLD,
        window_seconds: int = DEFAULT_BACKFILL_WINDOW_SECONDS,
        tz: Optional[tzinfo] = None,
    ):
        self.store = store
        self.threshold = threshold
        self.window = timedelta(seconds=window_seconds)
        self.tz = tz

    def check(self, account_id: str, new_weekly_percent: Optional[float]) -> ResetOutcome:
        """Compare an incoming reading with the stored one; call BEFORE inserting it.

        Synthetic points are written here; the caller still inserts the real
        reading whatever the outcome.
        """
        prev = self.store.latest_reading(account_id, real_only=True)
        if prev is None:
            return ResetOutcome()
        return self._handle_pair(prev, new_weekly_percent)

    def backfill(self, account_id: Optional[str] = None) -> int:
        """Walk stored history and add any missing reset points.

        Safe to run repeatedly: resets that already have synthetic points
        within the window are skipped. Returns the number of rows inserted.
        """
        inserted = 0
        prev: Optional[Reading] = None
        for curr in list(self.store.iter_real_readings(account_id)):
            if prev is not None and prev.account_id == curr.account_id:
                outcome = self._handle_pair(prev, curr.weekly_all_percent)
                if outcome.synthetic_inserted:
                    logger.info(
                        "Reset: %s (%s%%) -> %s (%s%%) | synthetic at %s",
                        prev.timestamp,
                        prev.weekly_all_percent,
                        curr.timestamp,
                        curr.weekly_all_percent,
                        format_timestamp(outcome.reset_at),
                    )
                inserted += outcome.synthetic_inserted
            prev = curr
        logger.info("Backfill complete: inserted %d synthetic points", inserted)
        return inserted

    def _handle_pair(self, prev: Reading, new_weekly_percent: Optional[float]) -> ResetOutcome:
        if not is_reset(prev.weekly_all_percent, new_weekly_percent, self.threshold):
            return ResetOutcome()

        outcome = ResetOutcome(reset_detected=True)
        outcome.reset_at = parse_reset_time(prev.weekly_reset, prev.timestamp, self.tz)
        if outcome.reset_at is None:
            logger.debug(
                "Reset detected for %s but reset time %r is unparseable; no synthetic points",
                prev.account_id,
                prev.weekly_reset,
            )
            return outcome

        with self.store.transaction():
            existing = self.store.count_synthetic_between(
                prev.account_id,
                format_timestamp(outcome.reset_at - self.window),
                format_timestamp(outcome.reset_at + self.window),
            )
            if existing:
                logger.debug(
                    "Synthetic points already present near %s for %s",
                    format_timestamp(outcome.reset_at),
                    prev.account_id,
                )
                return outcome
            for point in synthetic_points(prev, outcome.reset_at):
                self.store.add_reading(point)
                outcome.synthetic_inserted += 1
        return outcome
