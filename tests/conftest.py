"""Shared fixtures for claude_monitor tests."""

from datetime import timezone

import pytest

from claude_monitor.config import MonitorConfig
from claude_monitor.database import UsageStore


@pytest.fixture
def store():
    """In-memory UsageStore, closed after the test."""
    s = UsageStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temp dir, reading reset clock times as UTC."""
    return MonitorConfig(data_dir=tmp_path / "monitor", timezone_name="UTC")


@pytest.fixture
def utc():
    return timezone.utc


@pytest.fixture
def add_reading(store):
    """Factory inserting a real reading with sensible defaults."""
    def _add(timestamp, weekly=None, account_id="acct", **kwargs):
        store.upsert_account(account_id, timestamp=timestamp)
        return store.insert_reading(
            account_id,
            timestamp,
            weekly_all_percent=weekly,
            **kwargs,
        )
    return _add
