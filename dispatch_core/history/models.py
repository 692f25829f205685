"""
DISPATCH-CORE History — Occurrence Status Log

Write-once rows; one per status-changing operation, appended inside the
same transaction as the change they describe.
"""
from typing import Any, Dict, List, Optional

from ..errors import NotFound
from ..store.db import Transaction, new_id, query, query_one, utc_now


def append_history(
    tx: Transaction,
    occurrence_id: str,
    previous_status: Optional[str],
    new_status: str,
    changed_by: str,
    dispatch_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    return tx.insert("occurrence_history", {
        "id": new_id(),
        "occurrence_id": occurrence_id,
        "dispatch_id": dispatch_id,
        "previous_status": previous_status,
        "new_status": new_status,
        "changed_by": changed_by,
        "notes": notes,
        "created_at": utc_now(),
    })


def get_occurrence_history(occurrence_id: str) -> List[Dict[str, Any]]:
    """History rows in insertion order, with the author's name."""
    if not query_one("SELECT id FROM occurrences WHERE id = ?", (occurrence_id,)):
        raise NotFound("Occurrence not found.", occurrence_id=occurrence_id)
    return query("""
        SELECT h.*, u.full_name AS changed_by_name, v.identifier AS vehicle_identifier
        FROM occurrence_history h
        LEFT JOIN users u ON u.id = h.changed_by
        LEFT JOIN dispatches d ON d.id = h.dispatch_id
        LEFT JOIN vehicles v ON v.id = d.vehicle_id
        WHERE h.occurrence_id = ?
        ORDER BY h.seq ASC
    """, (occurrence_id,))


def count_history(occurrence_id: str) -> int:
    row = query_one(
        "SELECT COUNT(*) AS n FROM occurrence_history WHERE occurrence_id = ?", (occurrence_id,)
    )
    return row["n"] if row else 0
