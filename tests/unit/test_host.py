"""Tests for the one-shot host lifecycle: one frame in, one frame out."""

import io
import logging
import sqlite3
from unittest import mock

from claude_monitor.config import MonitorConfig
from claude_monitor.database import UsageStore
from claude_monitor.native import host
from claude_monitor.native.protocol import encode_message, read_message


def _run(config, payload: bytes):
    out = io.BytesIO()
    response = host.handle_stream(io.BytesIO(payload), out, config)
    written = read_message(io.BytesIO(out.getvalue()))
    assert written == response
    return response


def test_record_then_fetch_through_file_db(config):
    resp = _run(config, encode_message({
        "type": "record-reading",
        "accountId": "acct",
        "data": {"timestamp": "2024-01-01T00:00:00.000Z", "primaryPercent": 37},
    }))
    assert resp["success"] is True
    assert resp["dbPath"] == str(config.db_path)
    assert config.db_path.exists()

    resp = _run(config, encode_message({"type": "fetch-accounts"}))
    assert resp["data"]["accounts"][0]["latestPercent"] == 37


def test_malformed_frame_still_answers(config):
    resp = _run(config, b"\x0a\x00\x00\x00{oops")
    assert resp["success"] is False
    assert "Truncated message" in resp["error"]


def test_empty_input_still_answers(config):
    resp = _run(config, b"")
    assert resp == {"success": False, "error": "No message received"}


def test_unknown_type(config):
    resp = _run(config, encode_message({"type": "nope"}))
    assert resp == {"success": False, "error": "Unknown message type"}


def test_storage_error_reported_and_store_closed(config):
    closed = []
    real_close = UsageStore.close

    def tracking_close(self):
        closed.append(True)
        real_close(self)

    with (
        mock.patch.object(UsageStore, "all_accounts", side_effect=sqlite3.OperationalError("disk I/O error")),
        mock.patch.object(UsageStore, "close", tracking_close),
    ):
        resp = _run(config, encode_message({"type": "fetch-accounts"}))

    assert resp == {"success": False, "error": "disk I/O error"}
    assert closed


def test_unopenable_database_reported(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    config = MonitorConfig(data_dir=tmp_path, db_file=blocker / "usage.db")
    resp = _run(config, encode_message({"type": "fetch-accounts"}))
    assert resp["success"] is False
    assert resp["error"]


def test_main_reads_stdin_and_ignores_browser_args(config, monkeypatch):
    monkeypatch.setenv("CLAUDE_MONITOR_DIR", str(config.data_dir))
    monkeypatch.delenv("CLAUDE_MONITOR_DB", raising=False)
    monkeypatch.delenv("CLAUDE_MONITOR_RESET_THRESHOLD", raising=False)
    monkeypatch.delenv("CLAUDE_MONITOR_TZ", raising=False)
    monkeypatch.setattr("sys.argv", ["claude-monitor-host", "chrome-extension://abc/"])

    stdin = mock.Mock()
    stdin.buffer = io.BytesIO(encode_message({"type": "fetch-accounts"}))
    stdout = mock.Mock()
    stdout.buffer = io.BytesIO()
    monkeypatch.setattr("sys.stdin", stdin)
    monkeypatch.setattr("sys.stdout", stdout)

    root = logging.getLogger()
    handlers = list(root.handlers)
    try:
        assert host.main() == 0
    finally:
        for h in root.handlers[:]:
            if h not in handlers:
                root.removeHandler(h)
                h.close()

    resp = read_message(io.BytesIO(stdout.buffer.getvalue()))
    assert resp["success"] is True
    assert config.log_path.exists()


def test_main_reports_config_error(monkeypatch):
    monkeypatch.setenv("CLAUDE_MONITOR_RESET_THRESHOLD", "lots")
    stdout = mock.Mock()
    stdout.buffer = io.BytesIO()
    monkeypatch.setattr("sys.stdout", stdout)

    assert host.main() == 1
    resp = read_message(io.BytesIO(stdout.buffer.getvalue()))
    assert resp["success"] is False
    assert resp["error"].startswith("Configuration error")
