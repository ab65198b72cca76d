"""Dispatch of decoded native messages to store and reset operations.

Every call to ``MessageRouter.dispatch`` returns exactly one response dict of
the form ``{"success": bool, ..., "error"?: str}``. Validation problems are
answered here; storage errors propagate to the host's top-level handler.
"""

import json
import logging
from typing import Optional

from claude_monitor.config import MonitorConfig
from claude_monitor.database import UsageStore
from claude_monitor.native.extraction import extract_usage
from claude_monitor.resets import ResetDetector
from claude_monitor.timestamps import normalize_timestamp

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_ID = "default"

RECORD_READING = "record-reading"
FETCH_ACCOUNTS = "fetch-accounts"
FETCH_HISTORY = "fetch-history"
REORDER_ACCOUNT = "reorder-account"

# Wire names used by earlier extension builds
_ALIASES = {
    "USAGE_UPDATE": RECORD_READING,
    "GET_DATA": FETCH_ACCOUNTS,
    "GET_HISTORY": FETCH_HISTORY,
    "REORDER_ACCOUNT": REORDER_ACCOUNT,
}


def _failure(error: str) -> dict:
    return {"success": False, "error": error}


def _optional_text(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _account_id(value) -> Optional[str]:
    """Account ids arrive as strings; numeric ids are kept as their text."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if value is None or isinstance(value, str):
        return _optional_text(value)
    raise ValueError("accountId must be a string")


class MessageRouter:
    """Routes one message by its ``type`` field.

    >>> from claude_monitor.database import UsageStore
    >>> router = MessageRouter(UsageStore(":memory:"))
    >>> router.dispatch({"type": "bogus"})
    {'success': False, 'error': 'Unknown message type'}
    """

    def __init__(self, store: UsageStore, config: Optional[MonitorConfig] = None):
        self.store = store
        self.config = config or MonitorConfig()
        self.detector = ResetDetector(
            store,
            threshold=self.config.reset_threshold,
            window_seconds=self.config.backfill_window_seconds,
            tz=self.config.reset_timezone,
        )
        self._handlers = {
            RECORD_READING: self.record_reading,
            FETCH_ACCOUNTS: self.fetch_accounts,
            FETCH_HISTORY: self.fetch_history,
            REORDER_ACCOUNT: self.reorder_account,
        }

    def dispatch(self, message: dict) -> dict:
        msg_type = message.get("type")
        handler = None
        if isinstance(msg_type, str):
            msg_type = _ALIASES.get(msg_type, msg_type)
            handler = self._handlers.get(msg_type)
        if handler is None:
            logger.warning("Unknown message type: %r", message.get("type"))
            return _failure("Unknown message type")
        logger.debug("Handling %s", msg_type)
        return handler(message)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def record_reading(self, message: dict) -> dict:
        """Upsert the account, check for a reset, append the reading."""
        try:
            account_id = _account_id(message.get("accountId")) or DEFAULT_ACCOUNT_ID
        except ValueError as e:
            return _failure(str(e))
        data = message.get("data")
        if data is None:
            return _failure("data required")
        if not isinstance(data, dict):
            return _failure("data must be an object")

        try:
            timestamp = normalize_timestamp(data.get("timestamp"))
        except ValueError as e:
            return _failure(str(e))
        fields = extract_usage(data)

        with self.store.transaction():
            self.store.upsert_account(
                account_id,
                account_name=_optional_text(data.get("accountName")),
                email=_optional_text(data.get("email")),
                plan=_optional_text(data.get("plan")),
                timestamp=timestamp,
            )
            outcome = self.detector.check(account_id, fields.weekly_all_percent)
            self.store.insert_reading(
                account_id,
                timestamp,
                primary_percent=fields.primary_percent,
                session_percent=fields.session_percent,
                weekly_all_percent=fields.weekly_all_percent,
                weekly_sonnet_percent=fields.weekly_sonnet_percent,
                session_reset=fields.session_reset,
                weekly_reset=fields.weekly_reset,
                raw_data=json.dumps(data, separators=(",", ":")),
            )

        if outcome.reset_detected:
            logger.info(
                "Reset detected for %s (synthetic points: %d)",
                account_id,
                outcome.synthetic_inserted,
            )

        return {
            "success": True,
            "accountId": account_id,
            "percent": fields.primary_percent,
            "resetDetected": outcome.reset_detected,
            "dbPath": self.store.db_path,
        }

    def fetch_accounts(self, message: dict) -> dict:
        accounts = [account.to_message() for account in self.store.all_accounts()]
        return {
            "success": True,
            "data": {"accounts": accounts, "dbPath": self.store.db_path},
        }

    def fetch_history(self, message: dict) -> dict:
        try:
            account_id = _account_id(message.get("accountId")) or DEFAULT_ACCOUNT_ID
        except ValueError as e:
            return _failure(str(e))
        limit = message.get("limit") or self.config.history_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            return _failure("limit must be a positive integer")
        history = [reading.model_dump() for reading in self.store.history(account_id, limit)]
        return {"success": True, "history": history}

    def reorder_account(self, message: dict) -> dict:
        try:
            account_id = _account_id(message.get("accountId"))
        except ValueError as e:
            return _failure(str(e))
        if account_id is None:
            return _failure("accountId required")
        if self.store.get_account(account_id) is None:
            return _failure(f"Unknown account: {account_id}")
        if self.store.reorder_to_front(account_id):
            logger.info("Moved account %s to the front", account_id)
        return {"success": True, "accountId": account_id}
