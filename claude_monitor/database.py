"""SQLite store for accounts and usage readings.

Two tables:
- accounts: one row per tracked subscription, with display ordering
- usage_history: append-only log of readings, including synthetic reset points

WAL mode for concurrent readers. Every multi-statement write runs inside a
single BEGIN IMMEDIATE transaction, so concurrent host processes serialize
on SQLite's own lock.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic v2 Models
# ---------------------------------------------------------------------------


class Account(BaseModel):
    """Pydantic v2 model for an accounts row (plus latest percent)."""

    id: str
    account_name: Optional[str] = None
    email: Optional[str] = None
    plan: Optional[str] = None
    last_updated: Optional[str] = None
    sort_order: int = 0
    latest_percent: Optional[float] = None

    def to_message(self) -> dict:
        """camelCase shape the extension and menu-bar app expect."""
        return {
            "id": self.id,
            "accountName": self.account_name,
            "email": self.email,
            "plan": self.plan,
            "lastUpdated": self.last_updated,
            "sortOrder": self.sort_order,
            "latestPercent": self.latest_percent,
        }


class Reading(BaseModel):
    """Pydantic v2 model for a usage_history row."""

    id: Optional[int] = None
    account_id: str
    timestamp: str
    primary_percent: Optional[float] = None
    session_percent: Optional[float] = None
    weekly_all_percent: Optional[float] = None
    weekly_sonnet_percent: Optional[float] = None
    session_reset: Optional[str] = None
    weekly_reset: Optional[str] = None
    raw_data: Optional[str] = None
    is_synthetic: bool = False


# ---------------------------------------------------------------------------
# Schema SQL
# ---------------------------------------------------------------------------

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    account_name TEXT,
    email TEXT,
    plan TEXT,
    last_updated TEXT,
    sort_order INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS usage_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    primary_percent REAL,
    session_percent REAL,
    weekly_all_percent REAL,
    weekly_sonnet_percent REAL,
    session_reset TEXT,
    weekly_reset TEXT,
    raw_data TEXT,
    is_synthetic INTEGER DEFAULT 0,
    FOREIGN KEY (account_id) REFERENCES accounts(id)
);
"""

INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_usage_account ON usage_history(account_id);
CREATE INDEX IF NOT EXISTS idx_usage_timestamp ON usage_history(timestamp DESC);
"""

# Columns added after the first release; older databases get them on open
_MIGRATIONS = [
    ("accounts", "sort_order", "INTEGER DEFAULT 0"),
    ("usage_history", "is_synthetic", "INTEGER DEFAULT 0"),
]

_READING_COLUMNS = (
    "account_id, timestamp, primary_percent, session_percent, "
    "weekly_all_percent, weekly_sonnet_percent, session_reset, weekly_reset, "
    "raw_data, is_synthetic"
)


class UsageStore:
    """Owns the one SQLite connection a host process uses.

    Use as a context manager so the connection is closed on every exit path.

    >>> with UsageStore(":memory:") as store:
    ...     store.all_accounts()
    []
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._write_lock = threading.RLock()
        self._tx_depth = 0

        # Create parent dir if needed (skip for :memory:)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: we issue BEGIN/COMMIT ourselves
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            self.db_path, timeout=30.0, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        try:
            self._conn.execute("PRAGMA busy_timeout = 30000")
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema()
        except Exception:
            self.close()
            raise

    def __enter__(self) -> "UsageStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("UsageStore is closed")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; nested calls join the outermost one."""
        with self._write_lock:
            conn = self._get_connection()
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield conn
                finally:
                    self._tx_depth -= 1
                return

            conn.execute("BEGIN IMMEDIATE")
            self._tx_depth = 1
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                self._tx_depth = 0

    _writer = transaction

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        yield self._get_connection()

    def _init_schema(self) -> None:
        with self._writer() as conn:
            for statement in SCHEMA_SQL.split(";"):
                if statement.strip():
                    conn.execute(statement)
            # Migrations run BEFORE indexes (indexes may reference new columns)
            for table, col_name, col_def in _MIGRATIONS:
                cols = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
                if col_name not in cols:
                    logger.info("Migrating %s: adding column %s", table, col_name)
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_def}")
            for statement in INDEXES_SQL.split(";"):
                if statement.strip():
                    conn.execute(statement)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ==================================================================
    # Accounts
    # ==================================================================

    def upsert_account(
        self,
        account_id: str,
        account_name: Optional[str] = None,
        email: Optional[str] = None,
        plan: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> Account:
        """Create the account or refresh its metadata.

        New accounts go to the end of the display order. On update, email and
        plan change only for non-null values, last_updated always changes, and
        account_name is filled in only while it is still empty, so a name the
        user picked is never replaced by an automatic update.

        >>> store = UsageStore(":memory:")
        >>> store.upsert_account("a", email="x@y.z", timestamp="2024-01-01T00:00:00.000Z").sort_order
        0
        >>> store.upsert_account("a", timestamp="2024-01-02T00:00:00.000Z").email
        'x@y.z'
        """
        if not account_id:
            raise ValueError("accountId required")

        with self._writer() as conn:
            conn.execute(
                """INSERT INTO accounts (id, account_name, email, plan, last_updated, sort_order)
                   VALUES (?, ?, ?, ?, ?,
                           (SELECT COALESCE(MAX(sort_order), -1) + 1 FROM accounts))
                   ON CONFLICT(id) DO UPDATE SET
                       account_name = COALESCE(accounts.account_name, excluded.account_name),
                       email = COALESCE(excluded.email, accounts.email),
                       plan = COALESCE(excluded.plan, accounts.plan),
                       last_updated = excluded.last_updated
                """,
                (account_id, account_name, email, plan, timestamp),
            )
            return self.get_account(account_id)

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get an account by ID with its latest primary percent.

        >>> UsageStore(":memory:").get_account("missing") is None
        True
        """
        with self._reader() as conn:
            row = conn.execute(
                """SELECT a.*, (
                       SELECT primary_percent FROM usage_history
                       WHERE account_id = a.id AND COALESCE(is_synthetic, 0) = 0
                       ORDER BY timestamp DESC, id DESC LIMIT 1
                   ) AS latest_percent
                   FROM accounts a WHERE a.id = ?""",
                (account_id,),
            ).fetchone()
            return _row_to_account(row) if row else None

    def all_accounts(self) -> list[Account]:
        """List accounts in display order, each with its latest primary percent."""
        with self._reader() as conn:
            rows = conn.execute(
                """SELECT a.*, (
                       SELECT primary_percent FROM usage_history
                       WHERE account_id = a.id AND COALESCE(is_synthetic, 0) = 0
                       ORDER BY timestamp DESC, id DESC LIMIT 1
                   ) AS latest_percent
                   FROM accounts a
                   ORDER BY COALESCE(a.sort_order, 0) ASC, a.last_updated DESC"""
            ).fetchall()
            return [_row_to_account(row) for row in rows]

    def rename_account(self, account_id: str, account_name: Optional[str]) -> bool:
        """Set (or clear, with None/blank) the user's display name."""
        name = account_name.strip() if account_name else None
        with self._writer() as conn:
            cursor = conn.execute(
                "UPDATE accounts SET account_name = ? WHERE id = ?",
                (name or None, account_id),
            )
            return cursor.rowcount > 0

    def reorder_to_front(self, account_id: str) -> bool:
        """Move an account to the front and renumber everyone 0..N-1.

        Relative order of the other accounts is kept. Returns False (and
        changes nothing) when the account is unknown or already first.

        >>> store = UsageStore(":memory:")
        >>> for aid in "AB":
        ...     _ = store.upsert_account(aid, timestamp="2024-01-01T00:00:00.000Z")
        >>> store.reorder_to_front("B")
        True
        >>> [a.id for a in store.all_accounts()]
        ['B', 'A']
        """
        with self._writer() as conn:
            ids = [
                row[0]
                for row in conn.execute(
                    "SELECT id FROM accounts "
                    "ORDER BY COALESCE(sort_order, 0) ASC, last_updated DESC"
                )
            ]
            if account_id not in ids or ids[0] == account_id:
                return False

            ids.remove(account_id)
            ids.insert(0, account_id)
            for i, aid in enumerate(ids):
                conn.execute("UPDATE accounts SET sort_order = ? WHERE id = ?", (i, aid))
            return True

    def delete_account(self, account_id: str) -> bool:
        """Delete an account and all of its readings."""
        with self._writer() as conn:
            deleted = conn.execute(
                "DELETE FROM usage_history WHERE account_id = ?", (account_id,)
            ).rowcount
            cursor = conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            if cursor.rowcount:
                logger.info("Deleted account %s and %d readings", account_id, deleted)
            return cursor.rowcount > 0

    # ==================================================================
    # Readings
    # ==================================================================

    def insert_reading(
        self,
        account_id: str,
        timestamp: str,
        primary_percent: Optional[float] = None,
        session_percent: Optional[float] = None,
        weekly_all_percent: Optional[float] = None,
        weekly_sonnet_percent: Optional[float] = None,
        session_reset: Optional[str] = None,
        weekly_reset: Optional[str] = None,
        raw_data: Optional[Any] = None,
        is_synthetic: bool = False,
    ) -> int:
        """Append a reading and return its row id.

        ``raw_data`` may be a string or anything JSON-serializable.
        Timestamps are not unique.
        """
        if raw_data is not None and not isinstance(raw_data, str):
            raw_data = json.dumps(raw_data, separators=(",", ":"))

        with self._writer() as conn:
            cursor = conn.execute(
                f"INSERT INTO usage_history ({_READING_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    account_id,
                    timestamp,
                    primary_percent,
                    session_percent,
                    weekly_all_percent,
                    weekly_sonnet_percent,
                    session_reset,
                    weekly_reset,
                    raw_data,
                    1 if is_synthetic else 0,
                ),
            )
            return cursor.lastrowid

    def add_reading(self, reading: Reading) -> int:
        """Insert a Reading model (its id is ignored)."""
        return self.insert_reading(
            reading.account_id,
            reading.timestamp,
            primary_percent=reading.primary_percent,
            session_percent=reading.session_percent,
            weekly_all_percent=reading.weekly_all_percent,
            weekly_sonnet_percent=reading.weekly_sonnet_percent,
            session_reset=reading.session_reset,
            weekly_reset=reading.weekly_reset,
            raw_data=reading.raw_data,
            is_synthetic=reading.is_synthetic,
        )

    def latest_reading(self, account_id: str, real_only: bool = False) -> Optional[Reading]:
        """Most recent reading by timestamp, or None.

        With ``real_only`` synthetic reset points are skipped.
        """
        synthetic_clause = "AND COALESCE(is_synthetic, 0) = 0" if real_only else ""
        with self._reader() as conn:
            row = conn.execute(
                f"""SELECT * FROM usage_history
                    WHERE account_id = ? {synthetic_clause}
                    ORDER BY timestamp DESC, id DESC
                    LIMIT 1""",
                (account_id,),
            ).fetchone()
            return _row_to_reading(row) if row else None

    def history(self, account_id: str, limit: int = 100) -> list[Reading]:
        """Newest ``limit`` readings for an account, newest first.

        >>> UsageStore(":memory:").history("nobody")
        []
        """
        with self._reader() as conn:
            rows = conn.execute(
                """SELECT * FROM usage_history
                   WHERE account_id = ?
                   ORDER BY timestamp DESC, id DESC
                   LIMIT ?""",
                (account_id, int(limit)),
            ).fetchall()
            return [_row_to_reading(row) for row in rows]

    def iter_real_readings(self, account_id: Optional[str] = None) -> Iterator[Reading]:
        """Observed (non-synthetic) readings ordered by account, then time."""
        where = "WHERE COALESCE(is_synthetic, 0) = 0"
        params: tuple = ()
        if account_id is not None:
            where += " AND account_id = ?"
            params = (account_id,)
        with self._reader() as conn:
            rows = conn.execute(
                f"SELECT * FROM usage_history {where} "
                "ORDER BY account_id, timestamp ASC, id ASC",
                params,
            ).fetchall()
        for row in rows:
            yield _row_to_reading(row)

    def count_synthetic_between(self, account_id: str, start: str, end: str) -> int:
        """Count synthetic points for an account with start <= timestamp <= end."""
        with self._reader() as conn:
            row = conn.execute(
                """SELECT COUNT(*) FROM usage_history
                   WHERE account_id = ? AND is_synthetic = 1
                   AND timestamp BETWEEN ? AND ?""",
                (account_id, start, end),
            ).fetchone()
            return row[0]


def _row_to_account(row: sqlite3.Row) -> Account:
    data = dict(row)
    if data.get("sort_order") is None:
        data["sort_order"] = 0
    return Account(**data)


def _row_to_reading(row: sqlite3.Row) -> Reading:
    data = dict(row)
    data["is_synthetic"] = bool(data.get("is_synthetic") or 0)
    return Reading(**data)
