"""
DISPATCH-CORE Store — Access Control

Role table for every command, plus organization scoping: everyone except an
admin acts only inside their own organization.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from ..errors import Unauthorized
from .db import query, query_one

logger = logging.getLogger(__name__)

ADMIN = "admin"
OBSERVER = "observer"
DISPATCHER_ROLES = frozenset({"dispatcher_police", "dispatcher_samu", "dispatcher_fire"})
FIELD_ROLES = frozenset({"police_officer", "samu_team", "firefighter"})
ALL_ROLES = DISPATCHER_ROLES | FIELD_ROLES | {ADMIN, OBSERVER}

# Dispatcher / field role per organization type
ORG_ROLES = {
    "police": ("dispatcher_police", "police_officer"),
    "samu": ("dispatcher_samu", "samu_team"),
    "fire": ("dispatcher_fire", "firefighter"),
}

_STAFF = DISPATCHER_ROLES | {ADMIN}
_CREW = DISPATCHER_ROLES | FIELD_ROLES | {ADMIN}

PERMISSIONS = {
    "occurrence.create": _STAFF,
    "occurrence.advance": _CREW,
    "occurrence.cancel": _STAFF,
    "dispatch.assign": _STAFF,
    "dispatch.advance": _CREW,
    "crew.join": _CREW,
    "crew.leave": _CREW,
    "crew.manage": _STAFF,
    "fleet.manage": frozenset({ADMIN}),
    "activity.read": _STAFF,
}


@dataclass(frozen=True)
class Actor:
    """The identity a command runs as."""

    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    organization_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.roles

    @property
    def is_dispatcher(self) -> bool:
        return bool(self.roles & DISPATCHER_ROLES)

    def has_any(self, roles: Iterable[str]) -> bool:
        return bool(self.roles & frozenset(roles))

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "roles": sorted(self.roles),
            "organization_id": self.organization_id,
        }


def authorize(actor: Optional[Actor], action: str, organization_id: Optional[str] = None):
    """Raise Unauthorized unless `actor` may perform `action` in `organization_id`."""
    if actor is None or not actor.user_id:
        raise Unauthorized("You must be signed in.")

    allowed = PERMISSIONS.get(action)
    if allowed is None or not actor.has_any(allowed):
        logger.warning(f"[Access] {actor.user_id} denied {action}")
        raise Unauthorized(action=action)

    if organization_id and not actor.is_admin and actor.organization_id != organization_id:
        logger.warning(f"[Access] {actor.user_id} denied {action} outside own organization")
        raise Unauthorized("That belongs to another organization.", action=action)


def load_actor(user_id: Optional[str]) -> Actor:
    """Build an Actor from the users / user_roles tables."""
    if not user_id:
        raise Unauthorized("You must be signed in.")
    user = query_one("SELECT id, organization_id, is_active FROM users WHERE id = ?", (user_id,))
    if not user or not user["is_active"]:
        raise Unauthorized("Unknown or inactive user.")
    roles = query("SELECT role FROM user_roles WHERE user_id = ?", (user_id,))
    return Actor(
        user_id=user["id"],
        roles=frozenset(r["role"] for r in roles),
        organization_id=user["organization_id"],
    )
