"""
DISPATCH-CORE Realtime — WebSocket Route

The connection acts as the user signed in through /api/session/login
(4001 when nobody is, 4003 when that user is unknown or inactive).

Client → server messages:
    {"type": "ping"}
    {"type": "refresh"}
    {"type": "filter", "filter": {...}}     dashboard filter, see OccurrenceFilter
    {"type": "dismiss", "key": [id, status]}

Server → client messages: connected, view, change, pong, dismissed, error.
"""
import asyncio
import logging

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect

from ..errors import DispatchError
from ..occurrences.models import OccurrenceFilter
from ..sessions import current_actor
from ..store.access import load_actor
from .broadcaster import get_broadcaster
from .hub import get_hub
from .session import ClientSession

logger = logging.getLogger(__name__)


def _view_message(session: ClientSession) -> dict:
    return {
        "type": "view",
        "filter": session.dashboard_filter.to_dict(),
        "pending_alerts": [a.to_dict() for a in session.pending_alerts],
        **session.view.to_dict(),
    }


def register_realtime_routes(app: FastAPI):

    @app.websocket("/ws/realtime")
    async def realtime_websocket(websocket: WebSocket):
        """Live session events for the signed-in user."""
        user_id = websocket.session.get("user_id")
        if not user_id:
            await websocket.close(code=4001)
            return
        try:
            actor = load_actor(user_id)
        except DispatchError:
            await websocket.close(code=4003)
            return

        broadcaster = get_broadcaster()
        hub = get_hub()
        hub.bind_loop(asyncio.get_running_loop())

        await broadcaster.connect(websocket, user_id)
        session = None
        try:
            session = hub.attach(actor)
            await websocket.send_json(_view_message(session))
            while True:
                data = await websocket.receive_json()
                msg_type = data.get("type")

                if msg_type == "ping":
                    await websocket.send_json({"type": "pong"})

                elif msg_type == "refresh":
                    session.refresh()
                    await websocket.send_json(_view_message(session))

                elif msg_type == "filter":
                    session.set_filter(OccurrenceFilter.from_dict(data.get("filter")))
                    await websocket.send_json(_view_message(session))

                elif msg_type == "dismiss":
                    key = data.get("key") or []
                    await websocket.send_json({
                        "type": "dismissed",
                        "key": key,
                        "ok": session.dismiss(key),
                    })

                else:
                    await websocket.send_json({"type": "error", "message": f"Unknown message type: {msg_type}"})

        except WebSocketDisconnect:
            pass
        except DispatchError as e:
            logger.warning(f"[Realtime] Session for {user_id} ended: {e.kind}")
            await websocket.close(code=1011, reason=e.kind)
        finally:
            await broadcaster.disconnect(websocket)
            if session is not None:
                hub.detach(user_id)

    @app.get("/api/realtime/status")
    async def api_realtime_status(request: Request):
        current_actor(request)
        return {
            "ok": True,
            "connections": get_broadcaster().count_connections(),
            "sessions": get_hub().session_users(),
        }
