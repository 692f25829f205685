"""
DISPATCH-CORE Activity Log — API Routes
"""
from typing import Optional

from fastapi import FastAPI, Query, Request

from ..sessions import current_actor
from ..store.access import authorize
from .models import count_activity, query_activity


def register_activity_routes(app: FastAPI):
    """Register activity log endpoints."""

    @app.get("/api/activity")
    async def api_activity(
        request: Request,
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        ok: Optional[bool] = None,
        since: Optional[str] = None,
    ):
        """Paginated, filtered activity log, newest first."""
        authorize(current_actor(request), "activity.read")
        filters = dict(action=action, user_id=user_id, entity_id=entity_id, ok=ok, since=since)
        return {
            "ok": True,
            "entries": query_activity(limit=limit, offset=offset, **filters),
            "total": count_activity(**filters),
            "limit": limit,
            "offset": offset,
        }
