"""
Claude Monitor - usage history for Claude subscriptions.

A browser extension scrapes usage percentages and hands them to the
native-messaging host (``claude-monitor-host``), which stores them in
~/.claude-monitor/usage.db and marks quota resets for charting.
The ``claude-monitor`` CLI inspects and maintains that database.
"""

__version__ = "0.3.0"

__all__ = [
    "__version__",
]
