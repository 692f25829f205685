"""
DISPATCH-CORE Dispatches Module
Vehicle assignment, dispatch status progression and vehicle release.
"""
from .engine import advance_dispatch_status, assign_vehicle
from .models import get_dispatch, list_dispatches, list_open_dispatches
from .routes import register_dispatch_routes

__all__ = [
    "advance_dispatch_status",
    "assign_vehicle",
    "get_dispatch",
    "list_dispatches",
    "list_open_dispatches",
    "register_dispatch_routes",
]
