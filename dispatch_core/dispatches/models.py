"""
DISPATCH-CORE Dispatches — Query Helpers
"""
from typing import Any, Dict, List, Optional

from ..errors import NotFound
from ..store.db import query, query_one

DISPATCH_SELECT = """
    SELECT d.*, v.identifier AS vehicle_identifier, v.type AS vehicle_type,
           o.code AS occurrence_code, o.title AS occurrence_title,
           o.priority AS occurrence_priority, o.type AS occurrence_type,
           o.organization_id AS organization_id
    FROM dispatches d
    JOIN vehicles v ON v.id = d.vehicle_id
    JOIN occurrences o ON o.id = d.occurrence_id
"""


def get_dispatch(dispatch_id: str) -> Dict[str, Any]:
    dispatch = query_one(DISPATCH_SELECT + " WHERE d.id = ?", (dispatch_id,))
    if not dispatch:
        raise NotFound("Dispatch not found.", dispatch_id=dispatch_id)
    return dispatch


def list_dispatches(occurrence_id: str) -> List[Dict[str, Any]]:
    """All dispatches of one occurrence, oldest first."""
    return query(DISPATCH_SELECT + " WHERE d.occurrence_id = ? ORDER BY d.dispatched_at, d.id", (occurrence_id,))


def list_open_dispatches(
    organization_id: Optional[str] = None,
    vehicle_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Dispatches still in progress, newest first (field team dashboard)."""
    sql = DISPATCH_SELECT + " WHERE d.status NOT IN ('completed', 'cancelled')"
    params: List[Any] = []
    if organization_id:
        sql += " AND o.organization_id = ?"
        params.append(organization_id)
    if vehicle_id:
        sql += " AND d.vehicle_id = ?"
        params.append(vehicle_id)
    return query(sql + " ORDER BY d.dispatched_at DESC", params)
