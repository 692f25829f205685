"""
DISPATCH-CORE Fleet — Vehicle Availability

`available` / `busy` is never written ad hoc: it is recomputed from the
active crew count and the open dispatch count inside the transaction that
changed either of them. `maintenance` / `off_duty` are service states set by
an administrator and left alone here.
"""
import logging
from typing import Dict, List, Optional, Tuple

from ..errors import NotFound
from ..store.db import Transaction, count, query_one, transaction, utc_now

logger = logging.getLogger(__name__)

DERIVED_STATUSES = ("available", "busy")
SERVICE_STATUSES = ("maintenance", "off_duty")
VEHICLE_STATUSES = DERIVED_STATUSES + SERVICE_STATUSES
OPEN_DISPATCH_SQL = "status NOT IN ('completed', 'cancelled')"


def derive_vehicle_status(active_crew: int, open_dispatches: int) -> str:
    return "busy" if active_crew > 0 or open_dispatches > 0 else "available"


def count_holds(tx: Transaction, vehicle_id: str) -> Tuple[int, int]:
    """(active crew members, open dispatches) currently holding a vehicle."""
    crew = tx.fetchone(
        "SELECT COUNT(*) AS n FROM vehicle_crew WHERE vehicle_id = ? AND is_active = 1",
        (vehicle_id,),
    )["n"]
    open_dispatches = tx.fetchone(
        f"SELECT COUNT(*) AS n FROM dispatches WHERE vehicle_id = ? AND {OPEN_DISPATCH_SQL}",
        (vehicle_id,),
    )["n"]
    return crew, open_dispatches


def refresh_vehicle_status(tx: Transaction, vehicle_id: str) -> str:
    """Re-derive one vehicle's status inside `tx`; returns the resulting status."""
    vehicle = tx.fetchone("SELECT id, status FROM vehicles WHERE id = ?", (vehicle_id,))
    if not vehicle:
        raise NotFound("Vehicle not found.", vehicle_id=vehicle_id)

    current = vehicle["status"]
    if current in SERVICE_STATUSES:
        return current

    target = derive_vehicle_status(*count_holds(tx, vehicle_id))
    if target != current:
        tx.update(
            "vehicles",
            vehicle_id,
            {"status": target, "updated_at": utc_now()},
            expect={"status": current},
        )
    return target


def reconcile_all() -> List[Dict[str, str]]:
    """
    Re-derive every vehicle in one transaction.

    Returns the repairs made as [{vehicle_id, identifier, old, new}]. With the
    engines behaving, this is always empty.
    """
    repairs = []
    with transaction() as tx:
        vehicles = tx.fetchall(
            "SELECT id, identifier, status FROM vehicles WHERE status IN ('available', 'busy')"
        )
        for vehicle in vehicles:
            new_status = refresh_vehicle_status(tx, vehicle["id"])
            if new_status != vehicle["status"]:
                repairs.append({
                    "vehicle_id": vehicle["id"],
                    "identifier": vehicle["identifier"],
                    "old": vehicle["status"],
                    "new": new_status,
                })

    for repair in repairs:
        logger.warning(
            f"[Fleet] Repaired {repair['identifier']} status drift: {repair['old']} -> {repair['new']}"
        )
    return repairs


def vehicle_holds(vehicle_id: str) -> Optional[Dict[str, int]]:
    """What currently holds a vehicle (admin screens, tests)."""
    if not query_one("SELECT id FROM vehicles WHERE id = ?", (vehicle_id,)):
        return None
    return {
        "active_crew": count(
            "SELECT COUNT(*) FROM vehicle_crew WHERE vehicle_id = ? AND is_active = 1", (vehicle_id,)
        ),
        "open_dispatches": count(
            f"SELECT COUNT(*) FROM dispatches WHERE vehicle_id = ? AND {OPEN_DISPATCH_SQL}", (vehicle_id,)
        ),
    }
