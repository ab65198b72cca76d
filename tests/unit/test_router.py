"""Unit tests for MessageRouter dispatch and responses."""

import json

import pytest

from claude_monitor.native.router import MessageRouter


@pytest.fixture
def router(store, config):
    return MessageRouter(store, config)


def _record(router, data, account_id="acct"):
    msg = {"type": "record-reading", "data": data}
    if account_id is not None:
        msg["accountId"] = account_id
    return router.dispatch(msg)


# ------------------------------------------------------------------
# record-reading
# ------------------------------------------------------------------


def test_record_reading_response(router, store):
    resp = _record(router, {
        "timestamp": "2024-01-01T00:00:00.000Z",
        "primaryPercent": 42,
        "weeklyAllPercent": 60,
        "email": "me@x.com",
        "plan": "Max",
    })
    assert resp == {
        "success": True,
        "accountId": "acct",
        "percent": 42,
        "resetDetected": False,
        "dbPath": ":memory:",
    }

    acct = store.get_account("acct")
    assert acct.email == "me@x.com"
    assert acct.plan == "Max"
    assert acct.last_updated == "2024-01-01T00:00:00.000Z"

    reading = store.latest_reading("acct")
    assert reading.primary_percent == 42
    assert reading.session_percent == 42
    assert reading.weekly_all_percent == 60
    assert json.loads(reading.raw_data)["email"] == "me@x.com"


def test_record_reading_default_account(router, store):
    resp = _record(router, {"primaryPercent": 1}, account_id=None)
    assert resp["accountId"] == "default"
    assert store.get_account("default") is not None

    resp = _record(router, {"primaryPercent": 2}, account_id="")
    assert resp["accountId"] == "default"
    assert len(store.history("default")) == 2


def test_record_reading_normalizes_timestamp(router, store):
    _record(router, {"timestamp": "2024-03-05T10:00:00+02:00", "primaryPercent": 1})
    assert store.latest_reading("acct").timestamp == "2024-03-05T08:00:00.000Z"


def test_record_reading_defaults_timestamp_to_now(router, store):
    _record(router, {"primaryPercent": 1})
    ts = store.latest_reading("acct").timestamp
    assert ts.endswith("Z") and len(ts) == len("2024-01-01T00:00:00.000Z")


def test_record_reading_bad_timestamp(router, store):
    resp = _record(router, {"timestamp": "yesterday-ish", "primaryPercent": 1})
    assert resp["success"] is False
    assert "Invalid timestamp" in resp["error"]
    assert store.all_accounts() == []


def test_record_reading_requires_data(router):
    assert router.dispatch({"type": "record-reading"}) == {"success": False, "error": "data required"}
    resp = router.dispatch({"type": "record-reading", "data": [1, 2]})
    assert resp["success"] is False


def test_record_reading_detects_reset(router, store):
    _record(router, {
        "timestamp": "2024-01-01T00:00:00.000Z",
        "primaryPercent": 90,
        "weeklyAllPercent": 50,
        "weeklyReset": "in 2 hr 30 min",
    })
    resp = _record(router, {
        "timestamp": "2024-01-01T04:00:00.000Z",
        "primaryPercent": 3,
        "weeklyAllPercent": 44.9,
    })
    assert resp["resetDetected"] is True

    rows = store.history("acct", 10)
    assert [r.is_synthetic for r in rows] == [False, True, True, False]
    assert rows[1].timestamp == "2024-01-01T02:30:01.000Z"
    assert rows[2].timestamp == "2024-01-01T02:30:00.000Z"


def test_record_reading_threshold_boundary(router, store):
    _record(router, {"timestamp": "2024-01-01T00:00:00.000Z", "weeklyAllPercent": 50,
                     "weeklyReset": "in 1 hr"})
    resp = _record(router, {"timestamp": "2024-01-01T02:00:00.000Z", "weeklyAllPercent": 45})
    assert resp["resetDetected"] is False
    assert not any(r.is_synthetic for r in store.history("acct"))


def test_record_reading_unparseable_reset_still_stored(router, store):
    _record(router, {"timestamp": "2024-01-01T00:00:00.000Z", "weeklyAllPercent": 80,
                     "weeklyReset": "later"})
    resp = _record(router, {"timestamp": "2024-01-02T00:00:00.000Z", "weeklyAllPercent": 1})
    assert resp["success"] is True
    assert resp["resetDetected"] is True
    rows = store.history("acct")
    assert len(rows) == 2
    assert not any(r.is_synthetic for r in rows)


def test_record_reading_uses_section_fallback(router, store):
    _record(router, {
        "primaryPercent": 10,
        "sections": [{"type": "all_models", "percentUsed": 33, "resetTime": "Thu 10:00 AM"}],
        "rawText": "Resets in 2 hr 10 min",
    })
    r = store.latest_reading("acct")
    assert r.weekly_all_percent == 33
    assert r.weekly_reset == "Thu 10:00 AM"
    assert r.session_reset == "in 2 hr 10 min"


def test_record_reading_keeps_user_name(router, store):
    _record(router, {"primaryPercent": 1, "accountName": "auto"})
    store.rename_account("acct", "Mine")
    _record(router, {"primaryPercent": 2, "accountName": "auto again"})
    _record(router, {"primaryPercent": 3})
    assert store.get_account("acct").account_name == "Mine"


def test_legacy_usage_update_alias(router, store):
    resp = router.dispatch({"type": "USAGE_UPDATE", "accountId": "x", "data": {"primaryPercent": 9}})
    assert resp["success"] is True
    assert store.latest_reading("x").primary_percent == 9


# ------------------------------------------------------------------
# fetch-accounts / fetch-history
# ------------------------------------------------------------------


def test_fetch_accounts(router):
    _record(router, {"timestamp": "2024-01-01T00:00:00.000Z", "primaryPercent": 15}, account_id="a")
    _record(router, {"timestamp": "2024-01-02T00:00:00.000Z", "primaryPercent": 25}, account_id="b")

    resp = router.dispatch({"type": "fetch-accounts"})
    assert resp["success"] is True
    assert resp["data"]["dbPath"] == ":memory:"
    accounts = resp["data"]["accounts"]
    assert [a["id"] for a in accounts] == ["a", "b"]
    assert accounts[0]["latestPercent"] == 15
    assert accounts[1]["sortOrder"] == 1
    assert router.dispatch({"type": "GET_DATA"}) == resp


def test_fetch_accounts_empty(router):
    assert router.dispatch({"type": "fetch-accounts"}) == {
        "success": True,
        "data": {"accounts": [], "dbPath": ":memory:"},
    }


def test_fetch_history(router):
    for h in range(5):
        _record(router, {"timestamp": f"2024-01-01T0{h}:00:00.000Z", "primaryPercent": h})

    resp = router.dispatch({"type": "fetch-history", "accountId": "acct", "limit": 3})
    assert resp["success"] is True
    history = resp["history"]
    assert [row["primary_percent"] for row in history] == [4, 3, 2]
    assert history[0]["is_synthetic"] is False
    assert history[0]["account_id"] == "acct"


def test_fetch_history_defaults(router, config):
    for i in range(config.history_limit + 5):
        _record(router, {"timestamp": f"2024-01-01T00:00:{i % 60:02d}.{i:03d}Z", "primaryPercent": 1},
                account_id=None)
    resp = router.dispatch({"type": "fetch-history"})
    assert len(resp["history"]) == config.history_limit


def test_fetch_history_bad_limit(router):
    resp = router.dispatch({"type": "fetch-history", "limit": "ten"})
    assert resp["success"] is False


def test_fetch_history_unknown_account_is_empty(router):
    assert router.dispatch({"type": "fetch-history", "accountId": "ghost"}) == {
        "success": True,
        "history": [],
    }


# ------------------------------------------------------------------
# reorder-account
# ------------------------------------------------------------------


def test_reorder_account(router, store):
    for aid in "ABCD":
        _record(router, {"timestamp": "2024-01-01T00:00:00.000Z", "primaryPercent": 1}, account_id=aid)

    assert router.dispatch({"type": "reorder-account", "accountId": "C"}) == {
        "success": True,
        "accountId": "C",
    }
    assert [a.id for a in store.all_accounts()] == ["C", "A", "B", "D"]


def test_reorder_account_missing_id(router):
    assert router.dispatch({"type": "reorder-account"}) == {
        "success": False,
        "error": "accountId required",
    }


def test_reorder_account_unknown(router):
    resp = router.dispatch({"type": "reorder-account", "accountId": "nope"})
    assert resp == {"success": False, "error": "Unknown account: nope"}


def test_reorder_account_already_first(router):
    _record(router, {"primaryPercent": 1}, account_id="A")
    assert router.dispatch({"type": "reorder-account", "accountId": "A"})["success"] is True


# ------------------------------------------------------------------
# unknown
# ------------------------------------------------------------------


@pytest.mark.parametrize("msg", [{}, {"type": "drop-tables"}, {"type": None}, {"type": ["x"]}])
def test_unknown_message_type(router, store, msg):
    assert router.dispatch(msg) == {"success": False, "error": "Unknown message type"}
    assert store.all_accounts() == []


def test_record_reading_numeric_account_id_kept(router, store):
    resp = _record(router, {"primaryPercent": 3}, account_id=42)
    assert resp["success"] is True
    assert resp["accountId"] == "42"
    assert store.get_account("42") is not None
    assert store.get_account("default") is None


@pytest.mark.parametrize("bad", [{"id": 1}, ["a"], True])
def test_record_reading_rejects_non_text_account_id(router, store, bad):
    resp = _record(router, {"primaryPercent": 3}, account_id=bad)
    assert resp == {"success": False, "error": "accountId must be a string"}
    assert store.all_accounts() == []


def test_reorder_account_numeric_id(router):
    _record(router, {"primaryPercent": 1}, account_id="first")
    _record(router, {"primaryPercent": 1}, account_id=7)
    resp = router.dispatch({"type": "reorder-account", "accountId": 7})
    assert resp == {"success": True, "accountId": "7"}


def test_fetch_history_numeric_account_id(router):
    _record(router, {"primaryPercent": 9}, account_id=42)
    resp = router.dispatch({"type": "fetch-history", "accountId": 42})
    assert [r["primary_percent"] for r in resp["history"]] == [9]
