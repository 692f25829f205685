"""
DISPATCH-CORE
Occurrence / dispatch lifecycle engine for emergency response coordination.

Commands take an explicit Actor and either apply atomically or raise a
DispatchError subclass. Reads return plain dicts.
"""
from .config import Settings
from .crew import get_current_crew_assignment, join_vehicle, leave_vehicle, list_crew_members
from .dispatches import advance_dispatch_status, assign_vehicle, list_dispatches, list_open_dispatches
from .errors import (
    AlreadyCrewing,
    DispatchError,
    InvalidTransition,
    NotCrewing,
    NotFound,
    OccurrenceClosed,
    StoreUnavailable,
    Unauthorized,
    ValidationError,
    VehicleUnavailable,
)
from .fleet import list_available_vehicles
from .history import get_occurrence_history
from .occurrences import (
    OccurrenceFilter,
    advance_occurrence_status,
    create_occurrence,
    get_occurrence,
    list_active_occurrences,
    list_occurrences,
)
from .realtime import ClientSession
from .store import Actor

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "Actor",
    "ClientSession",
    "OccurrenceFilter",
    # commands
    "create_occurrence",
    "advance_occurrence_status",
    "assign_vehicle",
    "advance_dispatch_status",
    "join_vehicle",
    "leave_vehicle",
    # reads
    "get_occurrence",
    "list_occurrences",
    "list_active_occurrences",
    "list_available_vehicles",
    "get_occurrence_history",
    "get_current_crew_assignment",
    "list_crew_members",
    "list_dispatches",
    "list_open_dispatches",
    # errors
    "DispatchError",
    "ValidationError",
    "NotFound",
    "InvalidTransition",
    "VehicleUnavailable",
    "OccurrenceClosed",
    "AlreadyCrewing",
    "NotCrewing",
    "Unauthorized",
    "StoreUnavailable",
]
