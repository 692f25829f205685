"""
DISPATCH-CORE Activity Log Module
Append-only audit of every command, accepted or rejected.
"""
from .emitter import audited, record_activity
from .models import count_activity, query_activity
from .routes import register_activity_routes

__all__ = [
    "audited",
    "record_activity",
    "count_activity",
    "query_activity",
    "register_activity_routes",
]
