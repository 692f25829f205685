"""
DISPATCH-CORE Crew — Query Helpers
"""
from typing import Any, Dict, List, Optional

from ..store.db import query, query_one


def get_current_crew_assignment(user_id: str) -> Optional[Dict[str, Any]]:
    """The user's active crew seat with its vehicle and base, or None."""
    row = query_one("""
        SELECT c.id, c.vehicle_id, c.user_id, c.joined_at,
               v.identifier AS vehicle_identifier, v.type AS vehicle_type,
               v.status AS vehicle_status, v.base_id,
               b.name AS base_name, b.organization_id
        FROM vehicle_crew c
        JOIN vehicles v ON v.id = c.vehicle_id
        JOIN bases b ON b.id = v.base_id
        WHERE c.user_id = ? AND c.is_active = 1
    """, (user_id,))
    if not row:
        return None
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "joined_at": row["joined_at"],
        "vehicle": {
            "id": row["vehicle_id"],
            "identifier": row["vehicle_identifier"],
            "type": row["vehicle_type"],
            "status": row["vehicle_status"],
            "organization_id": row["organization_id"],
            "base": {"id": row["base_id"], "name": row["base_name"]},
        },
    }


def list_crew_members(vehicle_id: str) -> List[Dict[str, Any]]:
    """Active crew of a vehicle, earliest joiner first."""
    return query("""
        SELECT c.id, c.user_id, c.joined_at, u.full_name, u.badge_number
        FROM vehicle_crew c
        JOIN users u ON u.id = c.user_id
        WHERE c.vehicle_id = ? AND c.is_active = 1
        ORDER BY c.joined_at
    """, (vehicle_id,))


def list_crew_history(vehicle_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    """Past and present crew seats of a vehicle, newest first."""
    return query("""
        SELECT c.*, u.full_name
        FROM vehicle_crew c
        JOIN users u ON u.id = c.user_id
        WHERE c.vehicle_id = ?
        ORDER BY c.joined_at DESC
        LIMIT ?
    """, (vehicle_id, limit))
