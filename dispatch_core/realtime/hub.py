"""
DISPATCH-CORE Realtime — Session Hub

Keeps one ClientSession per connected user and pushes its events to the
user's WebSocket connections. Session events arrive synchronously on the
thread that committed the change; sends are scheduled onto the server's
event loop.
"""
import asyncio
import logging
import threading
from typing import Dict, List, Optional, Set

from ..occurrences.models import OccurrenceFilter
from ..store.access import Actor
from .broadcaster import RealtimeBroadcaster, get_broadcaster
from .session import ALL_KINDS, ClientSession, SessionEvent

logger = logging.getLogger(__name__)


class RealtimeHub:

    def __init__(self, broadcaster: Optional[RealtimeBroadcaster] = None):
        self._broadcaster = broadcaster
        self._sessions: Dict[str, ClientSession] = {}
        self._refcounts: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._open_lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def broadcaster(self) -> RealtimeBroadcaster:
        if self._broadcaster is None:
            self._broadcaster = get_broadcaster()
        return self._broadcaster

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        """Event loop used for sends triggered from worker threads."""
        self._loop = loop

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def attach(self, actor: Actor, dashboard_filter: Optional[OccurrenceFilter] = None) -> ClientSession:
        """
        Session for this user, opened if it is not already.

        If opening fails the claim is released again, so a later attach
        starts from a clean slate.
        """
        with self._lock:
            session = self._sessions.get(actor.user_id)
            if session is None:
                session = ClientSession.for_actor(actor, dashboard_filter)
                session.on_change(ALL_KINDS, lambda event, uid=actor.user_id: self._forward(uid, event))
                self._sessions[actor.user_id] = session
            self._refcounts[actor.user_id] = self._refcounts.get(actor.user_id, 0) + 1
        try:
            with self._open_lock:
                session.open()
        except Exception:
            logger.warning(f"[Realtime] Could not open session for {actor.user_id}")
            self.detach(actor.user_id)
            raise
        return session

    def detach(self, user_id: str):
        """Drop one connection's claim; closes the session with the last one."""
        with self._lock:
            remaining = self._refcounts.get(user_id, 0) - 1
            if remaining > 0:
                self._refcounts[user_id] = remaining
                return
            self._refcounts.pop(user_id, None)
            session = self._sessions.pop(user_id, None)
        if session is not None:
            session.close()

    def get_session(self, user_id: str) -> Optional[ClientSession]:
        return self._sessions.get(user_id)

    def session_users(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._refcounts.clear()
        for session in sessions:
            session.close()

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def _forward(self, user_id: str, event: SessionEvent):
        """Schedule the async send from whatever thread delivered the event."""
        payload = event.to_dict()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.broadcaster.send_to_user(user_id, "change", payload))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            task.add_done_callback(self._log_send_failure)
        elif self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(
                self.broadcaster.send_to_user(user_id, "change", payload), self._loop
            )
            future.add_done_callback(self._log_send_failure)
        else:
            logger.debug(f"[Realtime] No event loop, {event.kind} event for {user_id} not pushed")

    @staticmethod
    def _log_send_failure(future):
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"[Realtime] Push failed: {exc!r}")

    def pending_sends(self) -> int:
        return len(self._tasks)


_hub: Optional[RealtimeHub] = None


def get_hub() -> RealtimeHub:
    global _hub
    if _hub is None:
        _hub = RealtimeHub()
    return _hub


def reset_hub():
    global _hub
    if _hub is not None:
        _hub.close_all()
    _hub = None
