"""
DISPATCH-CORE Realtime Module
Change-feed driven client sessions, alerting and WebSocket fan-out.
"""
from .alerts import Alert, AlertPreferences, SOUND_PATTERNS, build_dispatch_alert, build_occurrence_alert
from .broadcaster import RealtimeBroadcaster, get_broadcaster
from .hub import RealtimeHub, get_hub, reset_hub
from .routes import register_realtime_routes
from .session import ClientSession, SessionEvent, SessionView

__all__ = [
    "Alert",
    "AlertPreferences",
    "SOUND_PATTERNS",
    "build_dispatch_alert",
    "build_occurrence_alert",
    "RealtimeBroadcaster",
    "get_broadcaster",
    "RealtimeHub",
    "get_hub",
    "reset_hub",
    "register_realtime_routes",
    "ClientSession",
    "SessionEvent",
    "SessionView",
]
