"""
DISPATCH-CORE Dispatches — Assignment Engine

assign_vehicle() binds an available vehicle to an occurrence.
advance_dispatch_status() moves one dispatch forward and reflects the result
into its occurrence through derive_occurrence_status(), the only place the
occurrence status is computed from dispatches.

The vehicle claim is the conditional update
    UPDATE vehicles SET status='busy' WHERE id=? AND status='available'
so of two concurrent assignments of one vehicle exactly one wins.
"""
import logging
from typing import Any, Dict, Optional

from ..activity.emitter import audited
from ..errors import InvalidTransition, NotFound, OccurrenceClosed, Unauthorized, VehicleUnavailable
from ..fleet.availability import refresh_vehicle_status
from ..history.models import append_history
from ..occurrences.engine import set_occurrence_status
from ..occurrences.lifecycle import (
    DISPATCH_TIMESTAMPS,
    STATUS_LABELS,
    check_dispatch_transition,
    check_occurrence_transition,
    derive_occurrence_status,
    is_terminal,
)
from ..store.access import Actor, authorize
from ..store.db import new_id, transaction, utc_now

logger = logging.getLogger(__name__)

VEHICLE_WITH_ORG = """
    SELECT v.*, b.organization_id AS organization_id
    FROM vehicles v JOIN bases b ON b.id = v.base_id
    WHERE v.id = ?
"""


@audited("dispatch.assign", "occurrence")
def assign_vehicle(
    occurrence_id: str,
    vehicle_id: str,
    actor: Actor,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Dispatch `vehicle_id` to `occurrence_id`; returns the new dispatch."""
    with transaction() as tx:
        occurrence = tx.get("occurrences", occurrence_id)
        if not occurrence:
            raise NotFound("Occurrence not found.", occurrence_id=occurrence_id)
        vehicle = tx.fetchone(VEHICLE_WITH_ORG, (vehicle_id,))
        if not vehicle:
            raise NotFound("Vehicle not found.", vehicle_id=vehicle_id)

        authorize(actor, "dispatch.assign", occurrence["organization_id"])
        if vehicle["organization_id"] != occurrence["organization_id"]:
            raise Unauthorized(
                "That vehicle belongs to another organization.",
                vehicle_id=vehicle_id, occurrence_id=occurrence_id,
            )
        if is_terminal(occurrence["status"]):
            raise OccurrenceClosed(occurrence_id=occurrence_id, status=occurrence["status"])

        now = utc_now()
        claimed = tx.update(
            "vehicles", vehicle_id,
            {"status": "busy", "updated_at": now},
            expect={"status": "available"},
        )
        if claimed != 1:
            raise VehicleUnavailable(vehicle_id=vehicle_id, vehicle_status=vehicle["status"])

        dispatch = tx.insert("dispatches", {
            "id": new_id(),
            "occurrence_id": occurrence_id,
            "vehicle_id": vehicle_id,
            "dispatched_by": actor.user_id,
            "status": "dispatched",
            "dispatched_at": now,
            "notes": notes,
            "updated_at": now,
        })

        if occurrence["status"] == "pending":
            check_occurrence_transition("pending", "dispatched", occurrence["type"], via_dispatch=True)
            set_occurrence_status(tx, occurrence, "dispatched", actor)
            append_history(
                tx, occurrence_id, "pending", "dispatched", actor.user_id,
                dispatch_id=dispatch["id"], notes=notes or f"Vehicle {vehicle['identifier']} dispatched",
            )
        else:
            append_history(
                tx, occurrence_id, None, "dispatched", actor.user_id,
                dispatch_id=dispatch["id"],
                notes=notes or f"Additional vehicle {vehicle['identifier']} dispatched",
            )

    logger.info(f"[Dispatch] Vehicle {vehicle['identifier']} dispatched to {occurrence['code']}")
    return dispatch


@audited("dispatch.status", "dispatch")
def advance_dispatch_status(
    dispatch_id: str,
    target_status: str,
    actor: Actor,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """Move one dispatch a single step forward; returns the updated dispatch."""
    with transaction() as tx:
        dispatch = tx.get("dispatches", dispatch_id)
        if not dispatch:
            raise NotFound("Dispatch not found.", dispatch_id=dispatch_id)
        occurrence = tx.get("occurrences", dispatch["occurrence_id"])

        authorize(actor, "dispatch.advance", occurrence["organization_id"])
        if is_terminal(occurrence["status"]):
            raise OccurrenceClosed(occurrence_id=occurrence["id"], status=occurrence["status"])
        check_dispatch_transition(dispatch["status"], target_status, occurrence["type"])

        now = utc_now()
        values = {"status": target_status, "updated_at": now}
        stamp_column = DISPATCH_TIMESTAMPS.get(target_status)
        if stamp_column:
            values[stamp_column] = now
        applied = tx.update("dispatches", dispatch_id, values, expect={"status": dispatch["status"]})
        if applied != 1:
            raise InvalidTransition(
                "The dispatch changed in the meantime. Refresh and try again.", dispatch_id=dispatch_id
            )

        statuses = [
            r["status"] for r in tx.fetchall(
                "SELECT status FROM dispatches WHERE occurrence_id = ?", (occurrence["id"],)
            )
        ]
        derived = derive_occurrence_status(occurrence["status"], statuses)
        if derived != occurrence["status"]:
            check_occurrence_transition(occurrence["status"], derived, occurrence["type"], via_dispatch=True)
            set_occurrence_status(tx, occurrence, derived, actor)

        append_history(
            tx, occurrence["id"], dispatch["status"], target_status, actor.user_id,
            dispatch_id=dispatch_id, notes=notes,
        )

        if target_status == "completed":
            refresh_vehicle_status(tx, dispatch["vehicle_id"])

        updated = tx.get("dispatches", dispatch_id)

    logger.info(
        f"[Dispatch] {occurrence['code']} dispatch {dispatch_id[:8]} "
        f"{STATUS_LABELS[dispatch['status']]} -> {STATUS_LABELS[target_status]}"
        + (f" (occurrence {STATUS_LABELS[derived]})" if derived != occurrence["status"] else "")
    )
    return updated
