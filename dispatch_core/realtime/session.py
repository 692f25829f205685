"""
DISPATCH-CORE Realtime — Client Session

One ClientSession per connected user. It subscribes to the change feed for
occurrences, dispatches, vehicles and crew; on every change it re-fetches its
view, so the view always converges to what a fresh fetch returns, then
hands listeners a deduplicated, alert-annotated SessionEvent.

The feed is at-least-once. Repeated row versions are dropped, and alerts
are keyed on (entity id, status), so one logical transition produces at most
one alert per session.
"""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import Settings
from ..crew.models import get_current_crew_assignment
from ..errors import DispatchError
from ..fleet.models import get_user_preferences, list_available_vehicles
from ..occurrences.models import OccurrenceFilter, get_occurrence, list_active_occurrences
from ..store.access import Actor
from ..store.changefeed import ChangeEvent, ChangeFeed, Subscription, get_change_feed
from ..store.db import utc_now
from .alerts import Alert, AlertPreferences, build_dispatch_alert, build_occurrence_alert

logger = logging.getLogger(__name__)

# store table -> entity kind
ENTITY_KINDS = {
    "occurrences": "occurrence",
    "dispatches": "dispatch",
    "vehicles": "vehicle",
    "vehicle_crew": "crew",
}
ALL_KINDS = "*"


@dataclass
class SessionView:
    active_occurrences: List[Dict[str, Any]] = field(default_factory=list)
    available_vehicles: List[Dict[str, Any]] = field(default_factory=list)
    crew_assignment: Optional[Dict[str, Any]] = None
    refreshed_at: Optional[str] = None

    @property
    def crewed_vehicle_id(self) -> Optional[str]:
        if not self.crew_assignment:
            return None
        return self.crew_assignment["vehicle"]["id"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_occurrences": self.active_occurrences,
            "available_vehicles": self.available_vehicles,
            "crew_assignment": self.crew_assignment,
            "refreshed_at": self.refreshed_at,
        }


@dataclass
class SessionEvent:
    kind: str
    operation: str
    row: Dict[str, Any]
    alert: Optional[Alert] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "operation": self.operation,
            "row": self.row,
            "alert": self.alert.to_dict() if self.alert else None,
        }


def _remember(cache: "OrderedDict[Any, None]", key: Any, limit: int) -> bool:
    """Add `key` to a bounded seen-set; False if it was already there."""
    if key in cache:
        cache.move_to_end(key)
        return False
    cache[key] = None
    while len(cache) > limit:
        cache.popitem(last=False)
    return True


class ClientSession:
    """Live view and alert stream for one user."""

    def __init__(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        dashboard_filter: Optional[OccurrenceFilter] = None,
        preferences: Optional[AlertPreferences] = None,
        feed: Optional[ChangeFeed] = None,
    ):
        self.user_id = user_id
        self.organization_id = organization_id
        self.dashboard_filter = dashboard_filter or OccurrenceFilter(organization_id=organization_id)
        self.preferences = preferences
        self.view = SessionView()

        self._feed = feed or get_change_feed()
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []
        self._listeners: Dict[str, List[Callable[[SessionEvent], None]]] = {}
        self._seen_versions: "OrderedDict[Tuple, None]" = OrderedDict()
        self._alerted: "OrderedDict[Tuple[str, str], None]" = OrderedDict()
        self._pending_alerts: "OrderedDict[Tuple[str, str], Alert]" = OrderedDict()

    @classmethod
    def for_actor(cls, actor: Actor, dashboard_filter: Optional[OccurrenceFilter] = None, feed=None) -> "ClientSession":
        org_id = None if actor.is_admin else actor.organization_id
        return cls(actor.user_id, organization_id=org_id, dashboard_filter=dashboard_filter, feed=feed)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return bool(self._subscriptions)

    def open(self) -> "ClientSession":
        if self.is_open:
            return self
        if self.preferences is None:
            self.preferences = AlertPreferences.from_dict(get_user_preferences(self.user_id))
        try:
            for table in ENTITY_KINDS:
                filters = {"user_id": self.user_id} if table == "vehicle_crew" else None
                self._subscriptions.append(self._feed.subscribe(table, self.handle_change, filters))
            self.refresh()
        except Exception:
            self._unsubscribe()
            raise
        logger.info(f"[Realtime] Session opened for {self.user_id}")
        return self

    def _unsubscribe(self):
        for sub in self._subscriptions:
            sub.close()
        self._subscriptions = []

    def close(self):
        self._unsubscribe()
        with self._lock:
            self._listeners.clear()
        logger.info(f"[Realtime] Session closed for {self.user_id}")

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def refresh(self) -> SessionView:
        """Re-fetch the whole view from the store."""
        view = SessionView(
            active_occurrences=list_active_occurrences(self.dashboard_filter),
            available_vehicles=list_available_vehicles(self.organization_id),
            crew_assignment=get_current_crew_assignment(self.user_id),
            refreshed_at=utc_now(),
        )
        with self._lock:
            self.view = view
        return view

    def set_filter(self, dashboard_filter: OccurrenceFilter) -> SessionView:
        if self.organization_id and not dashboard_filter.organization_id:
            dashboard_filter = replace(dashboard_filter, organization_id=self.organization_id)
        self.dashboard_filter = dashboard_filter
        return self.refresh()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_change(self, entity_kind: str, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """
        Deliver events for one entity kind (occurrence, dispatch, vehicle,
        crew) or "*" for all. Returns a function that removes the listener.
        """
        if entity_kind != ALL_KINDS and entity_kind not in ENTITY_KINDS.values():
            raise ValueError(f"Unknown entity kind: {entity_kind}")
        with self._lock:
            self._listeners.setdefault(entity_kind, []).append(callback)

        def remove():
            with self._lock:
                listeners = self._listeners.get(entity_kind, [])
                if callback in listeners:
                    listeners.remove(callback)
        return remove

    def _emit(self, event: SessionEvent):
        with self._lock:
            listeners = list(self._listeners.get(event.kind, [])) + list(self._listeners.get(ALL_KINDS, []))
        for callback in listeners:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"[Realtime] Listener failed for {self.user_id}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    def handle_change(self, change: ChangeEvent):
        kind = ENTITY_KINDS.get(change.table)
        if kind is None:
            return
        row = change.row or {}
        version = (
            change.table, change.operation, row.get("id"),
            row.get("updated_at"), row.get("status"), row.get("is_active"),
        )
        with self._lock:
            if not _remember(self._seen_versions, version, Settings.get("seen_event_cache_size")):
                return

        try:
            self.refresh()
        except DispatchError as e:
            logger.warning(f"[Realtime] View refresh failed for {self.user_id}: {e.kind}")

        alert = self._alert_for(kind, change)
        self._emit(SessionEvent(kind=kind, operation=change.operation, row=row, alert=alert))

    def _alert_for(self, kind: str, change: ChangeEvent) -> Optional[Alert]:
        if change.operation != "insert":
            return None

        alert = None
        if kind == "dispatch":
            vehicle_id = self.view.crewed_vehicle_id
            if not vehicle_id or change.row.get("vehicle_id") != vehicle_id:
                return None
            try:
                occurrence = get_occurrence(change.row["occurrence_id"])
            except DispatchError as e:
                logger.warning(f"[Realtime] Dispatch alert skipped: {e.kind}")
                return None
            alert = build_dispatch_alert(change.row, occurrence, self.preferences or AlertPreferences())
        elif kind == "occurrence":
            if not self.dashboard_filter.matches(change.row):
                return None
            alert = build_occurrence_alert(change.row, self.preferences or AlertPreferences())

        if alert is None:
            return None
        with self._lock:
            if not _remember(self._alerted, alert.key, Settings.get("seen_event_cache_size")):
                return None
            if alert.requires_dismissal:
                self._pending_alerts[alert.key] = alert
        logger.info(f"[Realtime] Alert {alert.kind} {alert.priority} for {self.user_id}")
        return alert

    # ------------------------------------------------------------------
    # Alerts awaiting dismissal
    # ------------------------------------------------------------------

    @property
    def pending_alerts(self) -> List[Alert]:
        with self._lock:
            return list(self._pending_alerts.values())

    def dismiss(self, key) -> bool:
        key = tuple(key)
        with self._lock:
            return self._pending_alerts.pop(key, None) is not None
