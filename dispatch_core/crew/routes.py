"""
DISPATCH-CORE Crew — API Routes
"""
from fastapi import FastAPI, Request

from ..fleet.models import get_vehicle
from ..sessions import current_actor
from .engine import join_vehicle, leave_vehicle
from .models import get_current_crew_assignment, list_crew_history, list_crew_members


def register_crew_routes(app: FastAPI):
    """Register crew join/leave and crew read endpoints."""

    @app.post("/api/crew/join")
    async def api_crew_join(request: Request):
        actor = current_actor(request)
        data = await request.json()
        crew = join_vehicle(data.get("vehicle_id"), data.get("user_id") or actor.user_id, actor)
        return {"ok": True, "crew": crew}

    @app.post("/api/crew/leave")
    async def api_crew_leave(request: Request):
        actor = current_actor(request)
        try:
            data = await request.json()
        except ValueError:
            data = {}
        crew = leave_vehicle((data or {}).get("user_id") or actor.user_id, actor)
        return {"ok": True, "crew": crew}

    @app.get("/api/crew/me")
    async def api_crew_me(request: Request):
        actor = current_actor(request)
        return {"ok": True, "assignment": get_current_crew_assignment(actor.user_id)}

    @app.get("/api/vehicles/{vehicle_id}/crew")
    async def api_vehicle_crew(request: Request, vehicle_id: str, history: bool = False):
        current_actor(request)
        get_vehicle(vehicle_id)
        result = {"ok": True, "crew": list_crew_members(vehicle_id)}
        if history:
            result["history"] = list_crew_history(vehicle_id)
        return result
