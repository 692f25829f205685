"""
DISPATCH-CORE Activity Log — Emitter

record_activity() is the single entry point for the operational audit
trail. It never breaks the caller: a failed write is logged and dropped.

@audited wraps a command so that its outcome (success, or the rejection
kind) is recorded after the command's own transaction has finished.
"""
import functools
import logging
from typing import Any, Callable, Dict, Optional

from ..errors import DispatchError
from ..store.access import Actor
from ..store.db import utc_now
from .models import insert_activity

logger = logging.getLogger(__name__)


def record_activity(
    action: str,
    actor: Optional[Actor] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    ok: bool = True,
    reason: Optional[str] = None,
    details: Optional[Dict] = None,
) -> Optional[int]:
    """Append one activity entry. Returns its ID, or None if the write failed."""
    try:
        return insert_activity(
            timestamp=utc_now(),
            action=action,
            user_id=actor.user_id if actor else None,
            entity_type=entity_type,
            entity_id=entity_id,
            ok=ok,
            reason=reason,
            details=details,
        )
    except Exception as e:
        logger.error(f"[Activity] record_activity failed for {action}: {e}")
        return None


def _find_actor(args, kwargs) -> Optional[Actor]:
    actor = kwargs.get("actor")
    if isinstance(actor, Actor):
        return actor
    for arg in args:
        if isinstance(arg, Actor):
            return arg
    return None


def audited(action: str, entity_type: str) -> Callable:
    """
    Record every call of a command. The entity is the command's first
    positional argument (the occurrence, dispatch, vehicle or user it targets).
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            actor = _find_actor(args, kwargs)
            entity_id = args[0] if args and isinstance(args[0], str) else None
            try:
                result = func(*args, **kwargs)
            except DispatchError as e:
                logger.warning(f"[Activity] {action} rejected: {e.kind} ({e.message})")
                record_activity(
                    action, actor, entity_type, entity_id,
                    ok=False, reason=e.kind, details={"message": e.message},
                )
                raise

            details: Dict[str, Any] = {}
            if isinstance(result, dict):
                if entity_id is None:
                    entity_id = result.get("id")
                for key in ("id", "status", "code", "vehicle_id"):
                    if result.get(key) is not None:
                        details[key] = result[key]
            record_activity(action, actor, entity_type, entity_id, ok=True, details=details or None)
            return result
        return wrapper
    return decorator
