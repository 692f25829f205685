"""
DISPATCH-CORE Occurrences — Lifecycle Engine

create_occurrence() opens an incident in `pending`.
advance_occurrence_status() moves it one legal step, or cancels it.

Every status change is a conditional write on the expected prior status
followed by exactly one history row, in the same transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..activity.emitter import audited
from ..config import Settings
from ..errors import InvalidTransition, NotFound
from ..fleet.availability import refresh_vehicle_status
from ..history.models import append_history
from ..store.access import Actor, authorize
from ..store.db import Transaction, new_id, transaction, utc_now
from .lifecycle import STATUS_LABELS, check_occurrence_transition, is_terminal
from .validation import validate_occurrence_fields

logger = logging.getLogger(__name__)


# ============================================================================
# Transaction-level helpers (shared with the dispatch engine)
# ============================================================================

def next_occurrence_code(tx: Transaction, organization: Dict[str, Any]) -> str:
    """`<ORGCODE>-<YYYY>-<NNNNN>` from a per-organization, per-year counter."""
    year = datetime.now(timezone.utc).year
    tx.execute("""
        INSERT INTO occurrence_sequences (organization_id, year, last_value)
        VALUES (?, ?, 1)
        ON CONFLICT (organization_id, year) DO UPDATE SET last_value = last_value + 1
    """, (organization["id"], year))
    value = tx.fetchone(
        "SELECT last_value FROM occurrence_sequences WHERE organization_id = ? AND year = ?",
        (organization["id"], year),
    )["last_value"]
    width = Settings.get("occurrence_code_width")
    return f"{organization['code']}-{year}-{value:0{width}d}"


def set_occurrence_status(tx: Transaction, occurrence: Dict[str, Any], target: str, actor: Actor) -> Dict[str, Any]:
    """
    Conditional status write. Loses to any concurrent change that got there
    first (InvalidTransition), so a retried command never applies twice.
    """
    now = utc_now()
    values = {"status": target, "updated_at": now}
    if is_terminal(target):
        values["closed_at"] = now
        values["closed_by"] = actor.user_id
    applied = tx.update("occurrences", occurrence["id"], values, expect={"status": occurrence["status"]})
    if applied != 1:
        raise InvalidTransition(
            "The occurrence changed in the meantime. Refresh and try again.",
            occurrence_id=occurrence["id"],
        )
    return tx.get("occurrences", occurrence["id"])


def close_open_dispatches(tx: Transaction, occurrence_id: str, outcome: str) -> int:
    """Close every open dispatch of an occurrence and release its vehicle."""
    now = utc_now()
    open_dispatches = tx.fetchall("""
        SELECT id, vehicle_id, status FROM dispatches
        WHERE occurrence_id = ? AND status NOT IN ('completed', 'cancelled')
    """, (occurrence_id,))
    for dispatch in open_dispatches:
        tx.update(
            "dispatches", dispatch["id"],
            {"status": outcome, "completed_at": now, "updated_at": now},
            expect={"status": dispatch["status"]},
        )
    for vehicle_id in {d["vehicle_id"] for d in open_dispatches}:
        refresh_vehicle_status(tx, vehicle_id)
    return len(open_dispatches)


# ============================================================================
# Commands
# ============================================================================

@audited("occurrence.create", "occurrence")
def create_occurrence(fields: Dict[str, Any], actor: Actor) -> Dict[str, Any]:
    data = validate_occurrence_fields(fields)
    authorize(actor, "occurrence.create", data["organization_id"])

    now = utc_now()
    with transaction() as tx:
        organization = tx.get("organizations", data["organization_id"])
        if not organization:
            raise NotFound("Organization not found.", organization_id=data["organization_id"])
        occurrence = tx.insert("occurrences", {
            "id": new_id(),
            "code": next_occurrence_code(tx, organization),
            "status": "pending",
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
            **data,
        })

    logger.info(
        f"[Occurrences] {occurrence['code']} created ({occurrence['type']}, {occurrence['priority']})"
    )
    return occurrence


@audited("occurrence.status", "occurrence")
def advance_occurrence_status(
    occurrence_id: str,
    target_status: str,
    actor: Actor,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Move an occurrence to `target_status`.

    A terminal target closes the occurrence, then closes its open dispatches
    (completed or cancelled alike) and re-derives each released vehicle.
    """
    with transaction() as tx:
        occurrence = tx.get("occurrences", occurrence_id)
        if not occurrence:
            raise NotFound("Occurrence not found.", occurrence_id=occurrence_id)

        action = "occurrence.cancel" if target_status == "cancelled" else "occurrence.advance"
        authorize(actor, action, occurrence["organization_id"])
        check_occurrence_transition(occurrence["status"], target_status, occurrence["type"])

        updated = set_occurrence_status(tx, occurrence, target_status, actor)
        append_history(
            tx, occurrence_id, occurrence["status"], target_status, actor.user_id, notes=notes,
        )
        closed = 0
        if is_terminal(target_status):
            closed = close_open_dispatches(tx, occurrence_id, target_status)

    logger.info(
        f"[Occurrences] {updated['code']} {STATUS_LABELS[occurrence['status']]} -> "
        f"{STATUS_LABELS[target_status]}" + (f", closed {closed} dispatch(es)" if closed else "")
    )
    return updated
