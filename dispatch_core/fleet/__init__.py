"""
DISPATCH-CORE Fleet Module
Organizations, bases, vehicles and users, with derived vehicle availability.
"""
from .availability import derive_vehicle_status, reconcile_all, refresh_vehicle_status, vehicle_holds
from .models import (
    create_base,
    create_organization,
    create_user,
    create_vehicle,
    get_organization,
    get_user,
    get_user_preferences,
    get_vehicle,
    list_available_vehicles,
    list_bases,
    list_organizations,
    list_users,
    list_vehicles,
    set_vehicle_service_status,
    update_user_preferences,
)
from .routes import register_fleet_routes
from .scheduler_jobs import init_fleet_scheduler, shutdown_fleet_scheduler

__all__ = [
    "derive_vehicle_status",
    "reconcile_all",
    "refresh_vehicle_status",
    "vehicle_holds",
    "create_base",
    "create_organization",
    "create_user",
    "create_vehicle",
    "get_organization",
    "get_user",
    "get_user_preferences",
    "get_vehicle",
    "list_available_vehicles",
    "list_bases",
    "list_organizations",
    "list_users",
    "list_vehicles",
    "set_vehicle_service_status",
    "update_user_preferences",
    "register_fleet_routes",
    "init_fleet_scheduler",
    "shutdown_fleet_scheduler",
]
