"""
DISPATCH-CORE Store — Change Feed

Committed row changes are published here, per table, in commit order.
Subscribers register a callback with an optional equality filter
(the `vehicle_id=eq.X` style of the dashboard subscriptions). Delivery is
at-least-once: consumers must tolerate seeing the same change twice.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

OPERATIONS = ("insert", "update", "delete")


@dataclass
class ChangeEvent:
    table: str
    operation: str
    row: Dict[str, Any]
    old: Optional[Dict[str, Any]] = None
    committed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "operation": self.operation,
            "row": self.row,
            "old": self.old,
            "committed_at": self.committed_at,
        }


@dataclass
class Subscription:
    table: str
    callback: Callable[[ChangeEvent], None]
    filters: Dict[str, Any] = field(default_factory=dict)
    feed: Optional["ChangeFeed"] = None

    def matches(self, event: ChangeEvent) -> bool:
        for column, expected in self.filters.items():
            if event.row.get(column) != expected:
                return False
        return True

    def close(self):
        if self.feed is not None:
            self.feed.unsubscribe(self)
            self.feed = None


def parse_filter(expr: Optional[str]) -> Dict[str, Any]:
    """Parse `column=eq.value` into {column: value}."""
    if not expr:
        return {}
    column, _, rhs = expr.partition("=")
    if not rhs.startswith("eq."):
        raise ValueError(f"Unsupported filter: {expr}")
    return {column.strip(): rhs[3:]}


class ChangeFeed:
    """In-process publisher of committed row changes."""

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()
        self._publish_lock = threading.RLock()

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        filters: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        sub = Subscription(table=table, callback=callback, filters=dict(filters or {}), feed=self)
        with self._lock:
            self._subscriptions.setdefault(table, []).append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            subs = self._subscriptions.get(sub.table, [])
            if sub in subs:
                subs.remove(sub)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        with self._lock:
            if table:
                return len(self._subscriptions.get(table, []))
            return sum(len(s) for s in self._subscriptions.values())

    def publish(self, events: Iterable[ChangeEvent]):
        """Deliver one committed transaction's changes, in order."""
        events = list(events)
        if not events:
            return
        # One transaction's batch is delivered before the next one starts.
        with self._publish_lock:
            for event in events:
                with self._lock:
                    subs = list(self._subscriptions.get(event.table, []))
                for sub in subs:
                    if not sub.matches(event):
                        continue
                    try:
                        sub.callback(event)
                    except Exception as e:
                        logger.error(
                            f"[ChangeFeed] Subscriber failed on {event.table}/{event.operation}: {e}",
                            exc_info=True,
                        )

    def clear(self):
        with self._lock:
            self._subscriptions.clear()


_feed: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    global _feed
    if _feed is None:
        _feed = ChangeFeed()
    return _feed


def reset_change_feed():
    global _feed
    _feed = None
