"""
DISPATCH-CORE Occurrences — API Routes
"""
from typing import Optional

from fastapi import FastAPI, Query, Request

from ..history.models import get_occurrence_history
from ..sessions import current_actor
from .engine import advance_occurrence_status, create_occurrence
from .models import OccurrenceFilter, count_occurrences, get_occurrence, list_occurrences


def register_occurrence_routes(app: FastAPI):
    """Register occurrence endpoints."""

    @app.post("/api/occurrences")
    async def api_create_occurrence(request: Request):
        actor = current_actor(request)
        data = await request.json()
        if isinstance(data, dict) and not data.get("organization_id"):
            data["organization_id"] = actor.organization_id
        occurrence = create_occurrence(data, actor)
        return {"ok": True, "occurrence": occurrence}

    @app.get("/api/occurrences")
    async def api_list_occurrences(
        request: Request,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        type: Optional[str] = None,
        organization_id: Optional[str] = None,
        search: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        active: bool = False,
        limit: int = Query(200, ge=1, le=1000),
        offset: int = Query(0, ge=0),
    ):
        """Filtered occurrence list; `active=true` gives the dispatcher's live board."""
        actor = current_actor(request)
        occurrence_filter = OccurrenceFilter.from_dict({
            "status": status,
            "priority": priority,
            "type": type,
            "organization_id": organization_id or (None if actor.is_admin else actor.organization_id),
            "search": search,
            "date_from": date_from,
            "date_to": date_to,
            "active_only": active,
        })
        return {
            "ok": True,
            "occurrences": list_occurrences(occurrence_filter, limit=limit, offset=offset),
            "total": count_occurrences(occurrence_filter),
            "filter": occurrence_filter.to_dict(),
        }

    @app.get("/api/occurrences/{occurrence_id}")
    async def api_get_occurrence(request: Request, occurrence_id: str):
        current_actor(request)
        return {"ok": True, "occurrence": get_occurrence(occurrence_id)}

    @app.post("/api/occurrences/{occurrence_id}/status")
    async def api_occurrence_status(request: Request, occurrence_id: str):
        actor = current_actor(request)
        data = await request.json()
        occurrence = advance_occurrence_status(
            occurrence_id, data.get("status"), actor, notes=data.get("notes"),
        )
        return {"ok": True, "occurrence": occurrence}

    @app.get("/api/occurrences/{occurrence_id}/history")
    async def api_occurrence_history(request: Request, occurrence_id: str):
        current_actor(request)
        return {"ok": True, "history": get_occurrence_history(occurrence_id)}
