"""
DISPATCH-CORE Fleet — API Routes

Directory administration (admin only) and fleet reads.
"""
from typing import Optional

from fastapi import FastAPI, Request

from ..sessions import current_actor
from ..store.access import authorize
from .availability import vehicle_holds
from .models import (
    create_base,
    create_organization,
    create_user,
    create_vehicle,
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


def register_fleet_routes(app: FastAPI):
    """Register organization, base, vehicle and user endpoints."""

    # ------------------------------------------------------------------
    # Organizations & bases
    # ------------------------------------------------------------------

    @app.get("/api/organizations")
    async def api_list_organizations(request: Request):
        current_actor(request)
        return {"ok": True, "organizations": list_organizations()}

    @app.post("/api/organizations")
    async def api_create_organization(request: Request):
        authorize(current_actor(request), "fleet.manage")
        data = await request.json()
        org = create_organization(data.get("name"), data.get("code"), data.get("type"), data.get("phone"))
        return {"ok": True, "organization": org}

    @app.get("/api/bases")
    async def api_list_bases(request: Request, organization_id: Optional[str] = None):
        current_actor(request)
        return {"ok": True, "bases": list_bases(organization_id)}

    @app.post("/api/bases")
    async def api_create_base(request: Request):
        data = await request.json()
        authorize(current_actor(request), "fleet.manage", data.get("organization_id"))
        base = create_base(
            data.get("organization_id"),
            data.get("name"),
            address=data.get("address"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
        )
        return {"ok": True, "base": base}

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    @app.get("/api/vehicles")
    async def api_list_vehicles(
        request: Request,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
    ):
        current_actor(request)
        return {"ok": True, "vehicles": list_vehicles(organization_id, status)}

    @app.get("/api/vehicles/available")
    async def api_available_vehicles(request: Request, organization_id: Optional[str] = None):
        actor = current_actor(request)
        org_id = organization_id or (None if actor.is_admin else actor.organization_id)
        return {"ok": True, "vehicles": list_available_vehicles(org_id)}

    @app.post("/api/vehicles")
    async def api_create_vehicle(request: Request):
        authorize(current_actor(request), "fleet.manage")
        data = await request.json()
        vehicle = create_vehicle(
            data.get("base_id"),
            data.get("identifier"),
            data.get("type"),
            capacity=data.get("capacity"),
        )
        return {"ok": True, "vehicle": vehicle}

    @app.get("/api/vehicles/{vehicle_id}")
    async def api_get_vehicle(request: Request, vehicle_id: str):
        current_actor(request)
        return {"ok": True, "vehicle": get_vehicle(vehicle_id), "holds": vehicle_holds(vehicle_id)}

    @app.post("/api/vehicles/{vehicle_id}/service")
    async def api_vehicle_service(request: Request, vehicle_id: str):
        actor = current_actor(request)
        data = await request.json()
        vehicle = set_vehicle_service_status(vehicle_id, data.get("status"), actor)
        return {"ok": True, "vehicle": vehicle}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @app.get("/api/users")
    async def api_list_users(request: Request, organization_id: Optional[str] = None):
        current_actor(request)
        return {"ok": True, "users": list_users(organization_id)}

    @app.post("/api/users")
    async def api_create_user(request: Request):
        data = await request.json()
        authorize(current_actor(request), "fleet.manage")
        user = create_user(
            data.get("full_name"),
            organization_id=data.get("organization_id"),
            roles=data.get("roles") or (),
            base_id=data.get("base_id"),
            badge_number=data.get("badge_number"),
            phone=data.get("phone"),
        )
        return {"ok": True, "user": user}

    @app.get("/api/users/me/preferences")
    async def api_my_preferences(request: Request):
        actor = current_actor(request)
        return {"ok": True, "preferences": get_user_preferences(actor.user_id)}

    @app.post("/api/users/me/preferences")
    async def api_update_my_preferences(request: Request):
        actor = current_actor(request)
        data = await request.json()
        return {"ok": True, "preferences": update_user_preferences(actor.user_id, data or {})}
