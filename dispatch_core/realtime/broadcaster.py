# ============================================================================
# DISPATCH-CORE Realtime — WebSocket Broadcaster
# ============================================================================
# Per-user connection tracking and JSON fan-out for session events.
# ============================================================================

import asyncio
import logging
from typing import Dict, Optional, Set

from fastapi import WebSocket

from ..store.db import utc_now

logger = logging.getLogger(__name__)


class RealtimeBroadcaster:
    """
    Manages WebSocket connections for realtime session events.

    A user may have several tabs open; each gets every event sent to that
    user. Connections whose send fails are dropped.
    """

    def __init__(self):
        # user_id -> set of WebSocket connections
        self._connections: Dict[str, Set[WebSocket]] = {}
        # WebSocket -> user_id
        self._ws_to_user: Dict[WebSocket, str] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str):
        """Accept and register a connection, then confirm it to the client."""
        await websocket.accept()

        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
            self._ws_to_user[websocket] = user_id

        logger.info(f"[WS] User {user_id} connected. Total connections: {self.count_connections()}")

        await self._send_to_websocket(websocket, {
            "type": "connected",
            "user_id": user_id,
            "timestamp": utc_now(),
        })

    async def disconnect(self, websocket: WebSocket) -> Optional[str]:
        """Remove a connection; returns its user_id."""
        async with self._lock:
            user_id = self._ws_to_user.pop(websocket, None)
            if user_id and user_id in self._connections:
                self._connections[user_id].discard(websocket)
                if not self._connections[user_id]:
                    del self._connections[user_id]

        logger.info(f"[WS] User {user_id} disconnected. Total connections: {self.count_connections()}")
        return user_id

    def count_connections(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    # ---- Send ----

    async def _send_to_websocket(self, ws: WebSocket, data: Dict) -> bool:
        try:
            await ws.send_json(data)
            return True
        except Exception as e:
            logger.warning(f"[WS] Send failed: {e}")
            return False

    async def send_to_user(self, user_id: str, event_type: str, data: Dict) -> int:
        """Send an event to every connection of one user."""
        message = {"type": event_type, "timestamp": utc_now(), **data}

        async with self._lock:
            connections = self._connections.get(user_id, set()).copy()

        sent_count = 0
        failed = []
        for ws in connections:
            if await self._send_to_websocket(ws, message):
                sent_count += 1
            else:
                failed.append(ws)

        for ws in failed:
            await self.disconnect(ws)

        return sent_count


_broadcaster: Optional[RealtimeBroadcaster] = None


def get_broadcaster() -> RealtimeBroadcaster:
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = RealtimeBroadcaster()
    return _broadcaster
