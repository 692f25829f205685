"""
DISPATCH-CORE Activity Log — Query Helpers

The activity_log table itself is created by the store schema.
"""
import json
from typing import Any, Dict, List, Optional

from ..store.db import get_conn


def insert_activity(
    timestamp: str,
    action: str,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    ok: bool = True,
    reason: Optional[str] = None,
    details: Optional[Dict] = None,
) -> int:
    """Insert one entry in its own transaction and return its ID."""
    conn = get_conn()
    try:
        cur = conn.execute("""
            INSERT INTO activity_log
                (timestamp, user_id, action, entity_type, entity_id, ok, reason, details_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            timestamp, user_id, action, entity_type, entity_id,
            1 if ok else 0, reason,
            json.dumps(details, default=str) if details else None,
        ))
        return cur.lastrowid
    finally:
        conn.close()


def _where(
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    entity_id: Optional[str] = None,
    ok: Optional[bool] = None,
    since: Optional[str] = None,
):
    conditions = []
    params: List[Any] = []
    if action:
        conditions.append("action = ?")
        params.append(action)
    if user_id:
        conditions.append("user_id = ?")
        params.append(user_id)
    if entity_id:
        conditions.append("entity_id = ?")
        params.append(entity_id)
    if ok is not None:
        conditions.append("ok = ?")
        params.append(1 if ok else 0)
    if since:
        conditions.append("timestamp >= ?")
        params.append(since)
    where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
    return where, params


def query_activity(limit: int = 50, offset: int = 0, **filters) -> List[Dict]:
    """Entries matching filters, newest first."""
    where, params = _where(**filters)
    conn = get_conn()
    try:
        rows = conn.execute(
            f"SELECT * FROM activity_log{where} ORDER BY id DESC LIMIT ? OFFSET ?",
            params + [limit, offset],
        ).fetchall()
    finally:
        conn.close()

    entries = []
    for r in rows:
        entry = dict(r)
        entry["ok"] = bool(entry["ok"])
        raw = entry.pop("details_json", None)
        entry["details"] = json.loads(raw) if raw else None
        entries.append(entry)
    return entries


def count_activity(**filters) -> int:
    where, params = _where(**filters)
    conn = get_conn()
    try:
        row = conn.execute(f"SELECT COUNT(*) AS cnt FROM activity_log{where}", params).fetchone()
    finally:
        conn.close()
    return row["cnt"] if row else 0
