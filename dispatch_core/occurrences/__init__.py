"""
DISPATCH-CORE Occurrences Module
Incident intake and the occurrence state machine.
"""
from .engine import advance_occurrence_status, create_occurrence
from .lifecycle import allowed_targets, derive_occurrence_status, is_terminal
from .models import (
    OccurrenceFilter,
    count_occurrences,
    get_occurrence,
    list_active_occurrences,
    list_occurrences,
)
from .routes import register_occurrence_routes

__all__ = [
    "advance_occurrence_status",
    "create_occurrence",
    "allowed_targets",
    "derive_occurrence_status",
    "is_terminal",
    "OccurrenceFilter",
    "count_occurrences",
    "get_occurrence",
    "list_active_occurrences",
    "list_occurrences",
    "register_occurrence_routes",
]
