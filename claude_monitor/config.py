"""Environment-driven configuration for the monitor host and CLI."""

import os
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

DEFAULT_DATA_DIR = Path.home() / ".claude-monitor"
DB_FILENAME = "usage.db"
LOG_FILENAME = "host.log"

# Weekly percentage drop (in points) that counts as a quota reset
DEFAULT_RESET_THRESHOLD = 5.0

# Backfill skips resets that already have synthetic points this close
DEFAULT_BACKFILL_WINDOW_SECONDS = 60

DEFAULT_HISTORY_LIMIT = 100


LOCALTIME_PATH = Path("/etc/localtime")


def local_timezone() -> tzinfo:
    """System local zone with its daylight-saving rules.

    Tries $TZ, then the /etc/localtime link or file, and only then the
    fixed offset currently in effect.
    """
    tz_env = os.getenv("TZ", "").lstrip(":")
    if tz_env:
        try:
            return ZoneInfo(tz_env)
        except (ZoneInfoNotFoundError, ValueError):
            pass

    if LOCALTIME_PATH.is_symlink():
        target = os.path.realpath(LOCALTIME_PATH)
        _, sep, key = target.partition("zoneinfo/")
        if sep:
            try:
                return ZoneInfo(key)
            except (ZoneInfoNotFoundError, ValueError):
                pass

    if LOCALTIME_PATH.is_file():
        try:
            with open(LOCALTIME_PATH, "rb") as f:
                return ZoneInfo.from_file(f, key="localtime")
        except (OSError, ValueError):
            pass

    return datetime.now().astimezone().tzinfo


class MonitorConfig(BaseModel):
    """Settings shared by the native host and the CLI.

    >>> cfg = MonitorConfig(data_dir=Path("/tmp/cm"))
    >>> cfg.db_path.name
    'usage.db'
    """

    data_dir: Path = DEFAULT_DATA_DIR
    db_file: Optional[Path] = None
    debug: bool = False
    reset_threshold: float = DEFAULT_RESET_THRESHOLD
    backfill_window_seconds: int = DEFAULT_BACKFILL_WINDOW_SECONDS
    history_limit: int = DEFAULT_HISTORY_LIMIT
    timezone_name: Optional[str] = None

    @property
    def db_path(self) -> Path:
        return self.db_file or self.data_dir / DB_FILENAME

    @property
    def log_path(self) -> Path:
        return self.data_dir / LOG_FILENAME

    @property
    def reset_timezone(self) -> tzinfo:
        """Zone used to read wall-clock reset strings like "Thu 10:00 AM".

        Falls back to the system's local zone when none is configured.
        """
        if self.timezone_name:
            return ZoneInfo(self.timezone_name)
        return local_timezone()

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        """Build config from CLAUDE_MONITOR_* environment variables.

        Raises:
            ValueError: if a variable holds a value that can't be used
        """
        data_dir = os.getenv("CLAUDE_MONITOR_DIR")
        db_file = os.getenv("CLAUDE_MONITOR_DB")
        threshold = os.getenv("CLAUDE_MONITOR_RESET_THRESHOLD")
        tz_name = os.getenv("CLAUDE_MONITOR_TZ") or None

        kwargs = {
            "data_dir": Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
            "db_file": Path(db_file).expanduser() if db_file else None,
            "debug": os.getenv("CLAUDE_MONITOR_DEBUG", "") == "1",
            "timezone_name": tz_name,
        }

        if threshold:
            try:
                kwargs["reset_threshold"] = float(threshold)
            except ValueError:
                raise ValueError(
                    f"CLAUDE_MONITOR_RESET_THRESHOLD must be a number, got {threshold!r}"
                ) from None
            if kwargs["reset_threshold"] < 0:
                raise ValueError("CLAUDE_MONITOR_RESET_THRESHOLD must not be negative")

        if tz_name:
            try:
                ZoneInfo(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone in CLAUDE_MONITOR_TZ: {tz_name!r}") from None

        return cls(**kwargs)
