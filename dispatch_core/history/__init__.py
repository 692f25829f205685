"""
DISPATCH-CORE History Module
Immutable per-occurrence status change log.
"""
from .models import append_history, count_history, get_occurrence_history

__all__ = [
    "append_history",
    "count_history",
    "get_occurrence_history",
]
