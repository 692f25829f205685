"""
DISPATCH-CORE Crew Module
Shift join/leave on vehicles and the availability it implies.
"""
from .engine import join_vehicle, leave_vehicle
from .models import get_current_crew_assignment, list_crew_history, list_crew_members
from .routes import register_crew_routes

__all__ = [
    "join_vehicle",
    "leave_vehicle",
    "get_current_crew_assignment",
    "list_crew_history",
    "list_crew_members",
    "register_crew_routes",
]
