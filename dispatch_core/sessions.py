"""
DISPATCH-CORE — Session Actor

Authentication is external: the session only remembers which user the
client acts as. Every route resolves its Actor from the session here.
"""
import logging

from fastapi import FastAPI, Request

from .errors import Unauthorized
from .store.access import Actor, load_actor

logger = logging.getLogger(__name__)


def current_actor(request: Request) -> Actor:
    """Resolve the signed-in user; raises Unauthorized when nobody is."""
    return load_actor(request.session.get("user_id"))


def register_session_routes(app: FastAPI):

    @app.post("/api/session/login")
    async def api_session_login(request: Request):
        data = await request.json()
        user_id = (data or {}).get("user_id")
        actor = load_actor(user_id)
        request.session["user_id"] = actor.user_id
        logger.info(f"[Session] {actor.user_id} signed in")
        return {"ok": True, "actor": actor.to_dict()}

    @app.post("/api/session/logout")
    async def api_session_logout(request: Request):
        user_id = request.session.pop("user_id", None)
        if user_id:
            logger.info(f"[Session] {user_id} signed out")
        return {"ok": True}

    @app.get("/api/session/status")
    async def api_session_status(request: Request):
        try:
            actor = current_actor(request)
        except Unauthorized:
            return {"ok": True, "logged_in": False}
        return {"ok": True, "logged_in": True, "actor": actor.to_dict()}
