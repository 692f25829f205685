"""
DISPATCH-CORE Occurrences — Lifecycle Rules

Pure state-machine tables shared by the occurrence and dispatch engines.

    pending -> dispatched -> en_route -> on_scene -> completed
                                               \\-> transporting -> completed   (medical, rescue)
    any non-terminal -> cancelled
"""
from typing import Iterable, Optional, Tuple

from ..errors import InvalidTransition

OCCURRENCE_TYPES = ("police", "medical", "fire", "rescue", "other")
PRIORITIES = ("low", "medium", "high", "critical")
OCCURRENCE_STATUSES = (
    "pending", "dispatched", "en_route", "on_scene", "transporting", "completed", "cancelled",
)
DISPATCH_STATUSES = ("dispatched", "en_route", "on_scene", "transporting", "completed", "cancelled")
TERMINAL_STATUSES = frozenset({"completed", "cancelled"})

# Types whose response includes patient conveyance
CONVEYANCE_TYPES = frozenset({"medical", "rescue"})

# Forward progress order; cancelled sits outside it
STATUS_RANK = {
    "pending": 0,
    "dispatched": 1,
    "en_route": 2,
    "on_scene": 3,
    "transporting": 4,
    "completed": 5,
}

# Timestamp column stamped on a dispatch entering a status
DISPATCH_TIMESTAMPS = {
    "en_route": "acknowledged_at",
    "on_scene": "arrived_at",
    "completed": "completed_at",
}

PRIORITY_LABELS = {"low": "Low", "medium": "Medium", "high": "High", "critical": "Critical"}
STATUS_LABELS = {
    "pending": "Pending",
    "dispatched": "Dispatched",
    "en_route": "En route",
    "on_scene": "On scene",
    "transporting": "Transporting",
    "completed": "Completed",
    "cancelled": "Cancelled",
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def next_forward_status(status: str, occurrence_type: str) -> Optional[str]:
    """The single forward successor of `status`, or None."""
    if status == "pending":
        return "dispatched"
    if status == "dispatched":
        return "en_route"
    if status == "en_route":
        return "on_scene"
    if status == "on_scene":
        return "transporting" if occurrence_type in CONVEYANCE_TYPES else "completed"
    if status == "transporting":
        return "completed"
    return None


def allowed_targets(status: str, occurrence_type: str) -> Tuple[str, ...]:
    """Every status an occurrence may move to from `status`."""
    if is_terminal(status):
        return ()
    forward = next_forward_status(status, occurrence_type)
    return (forward, "cancelled") if forward else ("cancelled",)


def check_occurrence_transition(current: str, target: str, occurrence_type: str, via_dispatch: bool = False):
    """Raise InvalidTransition unless `current -> target` is a legal edge."""
    if target not in OCCURRENCE_STATUSES:
        raise InvalidTransition(f"Unknown status '{target}'.", current=current, target=target)
    if is_terminal(current):
        raise InvalidTransition(
            f"Occurrence is already {STATUS_LABELS[current].lower()}.", current=current, target=target
        )
    if target not in allowed_targets(current, occurrence_type):
        raise InvalidTransition(
            f"Cannot move from {STATUS_LABELS[current]} to {STATUS_LABELS[target]}.",
            current=current, target=target,
        )
    if current == "pending" and target == "dispatched" and not via_dispatch:
        raise InvalidTransition(
            "An occurrence is dispatched by assigning a vehicle.", current=current, target=target
        )


def check_dispatch_transition(current: str, target: str, occurrence_type: str):
    """Dispatches only move forward one step; they are cancelled with their occurrence."""
    if target not in DISPATCH_STATUSES:
        raise InvalidTransition(f"Unknown status '{target}'.", current=current, target=target)
    if is_terminal(current):
        raise InvalidTransition(
            f"Dispatch is already {STATUS_LABELS[current].lower()}.", current=current, target=target
        )
    if next_forward_status(current, occurrence_type) != target:
        raise InvalidTransition(
            f"Cannot move from {STATUS_LABELS[current]} to {STATUS_LABELS[target]}.",
            current=current, target=target,
        )


def derive_occurrence_status(current: str, dispatch_statuses: Iterable[str]) -> str:
    """
    Occurrence status implied by its dispatches: the most advanced open
    dispatch, or `completed` once every non-cancelled dispatch is completed.
    Never moves backwards and never leaves a terminal status.
    """
    if is_terminal(current):
        return current
    statuses = [s for s in dispatch_statuses if s != "cancelled"]
    if not statuses:
        return current
    if all(s == "completed" for s in statuses):
        return "completed"
    open_statuses = [s for s in statuses if s != "completed"]
    most_advanced = max(open_statuses, key=STATUS_RANK.__getitem__)
    if STATUS_RANK[most_advanced] > STATUS_RANK[current]:
        return most_advanced
    return current
