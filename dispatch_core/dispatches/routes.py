"""
DISPATCH-CORE Dispatches — API Routes
"""
from typing import Optional

from fastapi import FastAPI, Request

from ..sessions import current_actor
from .engine import advance_dispatch_status, assign_vehicle
from .models import get_dispatch, list_dispatches, list_open_dispatches


def register_dispatch_routes(app: FastAPI):
    """Register dispatch endpoints."""

    @app.post("/api/occurrences/{occurrence_id}/dispatches")
    async def api_assign_vehicle(request: Request, occurrence_id: str):
        actor = current_actor(request)
        data = await request.json()
        dispatch = assign_vehicle(occurrence_id, data.get("vehicle_id"), actor, notes=data.get("notes"))
        return {"ok": True, "dispatch": dispatch}

    @app.get("/api/occurrences/{occurrence_id}/dispatches")
    async def api_list_dispatches(request: Request, occurrence_id: str):
        current_actor(request)
        return {"ok": True, "dispatches": list_dispatches(occurrence_id)}

    @app.get("/api/dispatches/open")
    async def api_open_dispatches(
        request: Request,
        organization_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
    ):
        actor = current_actor(request)
        org_id = organization_id or (None if actor.is_admin else actor.organization_id)
        return {"ok": True, "dispatches": list_open_dispatches(org_id, vehicle_id)}

    @app.get("/api/dispatches/{dispatch_id}")
    async def api_get_dispatch(request: Request, dispatch_id: str):
        current_actor(request)
        return {"ok": True, "dispatch": get_dispatch(dispatch_id)}

    @app.post("/api/dispatches/{dispatch_id}/status")
    async def api_dispatch_status(request: Request, dispatch_id: str):
        actor = current_actor(request)
        data = await request.json()
        dispatch = advance_dispatch_status(dispatch_id, data.get("status"), actor, notes=data.get("notes"))
        return {"ok": True, "dispatch": dispatch}
