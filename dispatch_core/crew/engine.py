"""
DISPATCH-CORE Crew — Vehicle Crew Coordinator

A user is on at most one vehicle at a time. Joining or leaving re-derives
the vehicle's availability in the same transaction: crew presence and open
dispatches are two independent holds, and releasing one never frees a
vehicle still held by the other.
"""
import logging
import sqlite3
from typing import Any, Dict

from ..activity.emitter import audited
from ..errors import AlreadyCrewing, NotCrewing, NotFound, VehicleUnavailable
from ..fleet.availability import SERVICE_STATUSES, refresh_vehicle_status
from ..store.access import Actor, authorize
from ..store.db import Transaction, new_id, transaction, utc_now

logger = logging.getLogger(__name__)

VEHICLE_WITH_ORG = """
    SELECT v.*, b.organization_id AS organization_id
    FROM vehicles v JOIN bases b ON b.id = v.base_id
    WHERE v.id = ?
"""


def _authorize_crew_change(actor: Actor, user_id: str, action: str, organization_id: str):
    """Users manage their own crew seat; admins and same-org dispatchers manage anyone's."""
    if actor is not None and actor.user_id == user_id:
        authorize(actor, action, organization_id)
    else:
        authorize(actor, "crew.manage", organization_id)


def _active_assignment(tx: Transaction, user_id: str):
    return tx.fetchone(
        "SELECT * FROM vehicle_crew WHERE user_id = ? AND is_active = 1", (user_id,)
    )


@audited("crew.join", "vehicle")
def join_vehicle(vehicle_id: str, user_id: str, actor: Actor) -> Dict[str, Any]:
    """Put `user_id` on `vehicle_id` for their shift; returns the crew row."""
    with transaction() as tx:
        vehicle = tx.fetchone(VEHICLE_WITH_ORG, (vehicle_id,))
        if not vehicle:
            raise NotFound("Vehicle not found.", vehicle_id=vehicle_id)
        if not tx.get("users", user_id):
            raise NotFound("User not found.", user_id=user_id)
        _authorize_crew_change(actor, user_id, "crew.join", vehicle["organization_id"])

        current = _active_assignment(tx, user_id)
        if current:
            raise AlreadyCrewing(vehicle_id=current["vehicle_id"])
        if vehicle["status"] in SERVICE_STATUSES:
            raise VehicleUnavailable(
                "That vehicle is out of service.", vehicle_id=vehicle_id, vehicle_status=vehicle["status"]
            )

        now = utc_now()
        try:
            crew = tx.insert("vehicle_crew", {
                "id": new_id(),
                "vehicle_id": vehicle_id,
                "user_id": user_id,
                "joined_at": now,
                "left_at": None,
                "is_active": 1,
                "created_at": now,
                "updated_at": now,
            })
        except sqlite3.IntegrityError as e:
            # ux_vehicle_crew_active_user: another join for this user committed first
            raise AlreadyCrewing() from e

        refresh_vehicle_status(tx, vehicle_id)

    logger.info(f"[Crew] {user_id} joined vehicle {vehicle['identifier']}")
    return crew


@audited("crew.leave", "user")
def leave_vehicle(user_id: str, actor: Actor) -> Dict[str, Any]:
    """Take `user_id` off their vehicle; returns the closed crew row."""
    with transaction() as tx:
        current = _active_assignment(tx, user_id)
        if not current:
            raise NotCrewing(user_id=user_id)
        vehicle = tx.fetchone(VEHICLE_WITH_ORG, (current["vehicle_id"],))
        _authorize_crew_change(actor, user_id, "crew.leave", vehicle["organization_id"])

        now = utc_now()
        closed = tx.update(
            "vehicle_crew", current["id"],
            {"is_active": 0, "left_at": now, "updated_at": now},
            expect={"is_active": 1},
        )
        if closed != 1:
            raise NotCrewing(user_id=user_id)

        refresh_vehicle_status(tx, current["vehicle_id"])
        crew = tx.get("vehicle_crew", current["id"])

    logger.info(f"[Crew] {user_id} left vehicle {vehicle['identifier']}")
    return crew
