"""
DISPATCH-CORE Store — Connections & Transactions

Every command runs inside transaction(): one `BEGIN IMMEDIATE` SQLite
transaction that either commits as a whole or rolls back. Row changes made
through the Transaction helpers are collected and published on the change
feed only after COMMIT succeeds.
"""
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..config import Settings
from ..errors import StoreUnavailable
from .changefeed import ChangeEvent, get_change_feed

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return uuid.uuid4().hex


def get_conn() -> sqlite3.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    try:
        conn = sqlite3.connect(
            Settings.get("db_path"),
            timeout=Settings.get("db_timeout_seconds"),
            check_same_thread=False,
            isolation_level=None,
        )
    except sqlite3.Error as e:
        logger.error(f"[Store] Cannot open database: {e}")
        raise StoreUnavailable() from e
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _rollback(conn: sqlite3.Connection):
    try:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
    except sqlite3.Error as e:
        logger.error(f"[Store] Rollback failed: {e}")


class Transaction:
    """Write helpers bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.changes: List[ChangeEvent] = []

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(sql, params).fetchone()
        return dict(row) if row else None

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return [dict(r) for r in self.conn.execute(sql, params).fetchall()]

    def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        return self.fetchone(f"SELECT * FROM {table} WHERE id = ?", (row_id,))

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored."""
        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        self.conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [values[c] for c in columns],
        )
        row = self.get(table, values["id"])
        self.changes.append(ChangeEvent(table=table, operation="insert", row=row))
        return row

    def update(
        self,
        table: str,
        row_id: str,
        values: Dict[str, Any],
        expect: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Conditional update: applied only when every `expect` column still holds
        its expected value. Returns the affected-row count (0 or 1).
        """
        old = self.get(table, row_id)
        assignments = ", ".join(f"{c} = ?" for c in values)
        params: List[Any] = list(values.values())
        where = "id = ?"
        params.append(row_id)
        for column, expected in (expect or {}).items():
            if expected is None:
                where += f" AND {column} IS NULL"
            else:
                where += f" AND {column} = ?"
                params.append(expected)
        cur = self.conn.execute(f"UPDATE {table} SET {assignments} WHERE {where}", params)
        if cur.rowcount:
            row = self.get(table, row_id)
            self.changes.append(ChangeEvent(table=table, operation="update", row=row, old=old))
        return cur.rowcount

    def delete(self, table: str, row_id: str) -> int:
        old = self.get(table, row_id)
        cur = self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
        if cur.rowcount and old:
            self.changes.append(ChangeEvent(table=table, operation="delete", row=old, old=old))
        return cur.rowcount


@contextmanager
def transaction() -> Iterator[Transaction]:
    """
    Run a block as one atomic write transaction.

    Lock waits are bounded by `db_timeout_seconds`; lock and I/O failures
    surface as StoreUnavailable. Any exception rolls back everything.
    """
    conn = get_conn()
    tx = Transaction(conn)
    committed = False
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            logger.error(f"[Store] Could not begin transaction: {e}")
            raise StoreUnavailable() from e

        try:
            yield tx
        except sqlite3.OperationalError as e:
            _rollback(conn)
            logger.error(f"[Store] Transaction failed: {e}")
            raise StoreUnavailable() from e
        except BaseException:
            _rollback(conn)
            raise

        try:
            conn.execute("COMMIT")
            committed = True
        except sqlite3.OperationalError as e:
            _rollback(conn)
            logger.error(f"[Store] Commit failed: {e}")
            raise StoreUnavailable() from e
    finally:
        conn.close()

    if committed:
        stamp = utc_now()
        for event in tx.changes:
            event.committed_at = stamp
        get_change_feed().publish(tx.changes)


def query(sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    """Read-only query outside any write transaction."""
    conn = get_conn()
    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.OperationalError as e:
        logger.error(f"[Store] Query failed: {e}")
        raise StoreUnavailable() from e
    finally:
        conn.close()
    return [dict(r) for r in rows]


def query_one(sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    rows = query(sql, params)
    return rows[0] if rows else None


def count(sql: str, params: Sequence[Any] = ()) -> int:
    row = query_one(sql, params)
    if not row:
        return 0
    return int(next(iter(row.values())) or 0)
