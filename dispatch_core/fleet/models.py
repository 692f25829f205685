"""
DISPATCH-CORE Fleet — Directory Models & Query Helpers

Organizations own bases, bases own vehicles. Users carry roles and alert
preferences. Writes go through store transactions so vehicle changes reach
the change feed like every other command.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from ..activity.emitter import audited
from ..errors import NotFound, ValidationError, VehicleUnavailable
from ..store.access import ALL_ROLES, Actor, authorize
from ..store.db import new_id, query, query_one, transaction, utc_now
from .availability import SERVICE_STATUSES, count_holds, refresh_vehicle_status

logger = logging.getLogger(__name__)

ORGANIZATION_TYPES = ("police", "samu", "fire")
ORG_CODE_RE = re.compile(r"^[A-Z0-9]{2,10}$")

VEHICLE_SELECT = """
    SELECT v.*, b.name AS base_name, b.organization_id AS organization_id
    FROM vehicles v
    JOIN bases b ON b.id = v.base_id
"""


# ============================================================================
# Organizations & bases
# ============================================================================

def create_organization(name: str, code: str, org_type: str, phone: Optional[str] = None) -> Dict[str, Any]:
    errors = {}
    name = (name or "").strip()
    code = (code or "").strip().upper()
    if not name:
        errors["name"] = "Name is required"
    if not ORG_CODE_RE.match(code):
        errors["code"] = "Code must be 2-10 uppercase letters or digits"
    if org_type not in ORGANIZATION_TYPES:
        errors["type"] = f"Type must be one of: {', '.join(ORGANIZATION_TYPES)}"
    if errors:
        raise ValidationError(fields=errors)

    now = utc_now()
    with transaction() as tx:
        if tx.fetchone("SELECT id FROM organizations WHERE code = ?", (code,)):
            raise ValidationError(fields={"code": "Code already in use"})
        org = tx.insert("organizations", {
            "id": new_id(),
            "name": name,
            "code": code,
            "type": org_type,
            "phone": phone,
            "created_at": now,
            "updated_at": now,
        })
    logger.info(f"[Fleet] Organization {code} created")
    return org


def get_organization(organization_id: str) -> Dict[str, Any]:
    org = query_one("SELECT * FROM organizations WHERE id = ?", (organization_id,))
    if not org:
        raise NotFound("Organization not found.", organization_id=organization_id)
    return org


def list_organizations() -> List[Dict[str, Any]]:
    return query("SELECT * FROM organizations ORDER BY name")


def create_base(
    organization_id: str,
    name: str,
    address: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> Dict[str, Any]:
    if not (name or "").strip():
        raise ValidationError(fields={"name": "Name is required"})
    now = utc_now()
    with transaction() as tx:
        if not tx.get("organizations", organization_id):
            raise NotFound("Organization not found.", organization_id=organization_id)
        base = tx.insert("bases", {
            "id": new_id(),
            "organization_id": organization_id,
            "name": name.strip(),
            "address": address,
            "latitude": latitude,
            "longitude": longitude,
            "is_active": 1,
            "created_at": now,
            "updated_at": now,
        })
    return base


def list_bases(organization_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if organization_id:
        return query(
            "SELECT * FROM bases WHERE organization_id = ? ORDER BY name", (organization_id,)
        )
    return query("SELECT * FROM bases ORDER BY name")


# ============================================================================
# Vehicles
# ============================================================================

def create_vehicle(base_id: str, identifier: str, vehicle_type: str, capacity: Optional[int] = None) -> Dict[str, Any]:
    errors = {}
    identifier = (identifier or "").strip()
    vehicle_type = (vehicle_type or "").strip()
    if not identifier:
        errors["identifier"] = "Identifier is required"
    if not vehicle_type:
        errors["type"] = "Type is required"
    if capacity is not None and (not isinstance(capacity, int) or capacity < 0):
        errors["capacity"] = "Capacity must be a non-negative whole number"
    if errors:
        raise ValidationError(fields=errors)

    now = utc_now()
    with transaction() as tx:
        base = tx.get("bases", base_id)
        if not base:
            raise NotFound("Base not found.", base_id=base_id)
        clash = tx.fetchone("""
            SELECT v.id FROM vehicles v JOIN bases b ON b.id = v.base_id
            WHERE b.organization_id = ? AND v.identifier = ?
        """, (base["organization_id"], identifier))
        if clash:
            raise ValidationError(fields={"identifier": "Identifier already used in this organization"})
        vehicle = tx.insert("vehicles", {
            "id": new_id(),
            "base_id": base_id,
            "identifier": identifier,
            "type": vehicle_type,
            "capacity": capacity,
            "status": "available",
            "created_at": now,
            "updated_at": now,
        })
    logger.info(f"[Fleet] Vehicle {identifier} added to base {base['name']}")
    return vehicle


def get_vehicle(vehicle_id: str) -> Dict[str, Any]:
    vehicle = query_one(VEHICLE_SELECT + " WHERE v.id = ?", (vehicle_id,))
    if not vehicle:
        raise NotFound("Vehicle not found.", vehicle_id=vehicle_id)
    return vehicle


def list_vehicles(organization_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
    where = []
    params: List[Any] = []
    if organization_id:
        where.append("b.organization_id = ?")
        params.append(organization_id)
    if status:
        where.append("v.status = ?")
        params.append(status)
    sql = VEHICLE_SELECT
    if where:
        sql += " WHERE " + " AND ".join(where)
    return query(sql + " ORDER BY v.identifier", params)


def list_available_vehicles(organization_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Vehicles a dispatcher may assign right now."""
    return list_vehicles(organization_id, status="available")


@audited("vehicle.service_status", "vehicle")
def set_vehicle_service_status(vehicle_id: str, status: str, actor: Actor) -> Dict[str, Any]:
    """
    Take a vehicle out of service (`maintenance` / `off_duty`) or put it back
    (`in_service`). Only an idle vehicle can leave service.
    """
    if status not in SERVICE_STATUSES + ("in_service",):
        raise ValidationError(fields={"status": "Status must be maintenance, off_duty or in_service"})

    with transaction() as tx:
        vehicle = tx.fetchone(VEHICLE_SELECT + " WHERE v.id = ?", (vehicle_id,))
        if not vehicle:
            raise NotFound("Vehicle not found.", vehicle_id=vehicle_id)
        authorize(actor, "fleet.manage", vehicle["organization_id"])

        if status == "in_service":
            if vehicle["status"] in SERVICE_STATUSES:
                tx.update(
                    "vehicles", vehicle_id,
                    {"status": "available", "updated_at": utc_now()},
                    expect={"status": vehicle["status"]},
                )
            refresh_vehicle_status(tx, vehicle_id)
        else:
            crew, open_dispatches = count_holds(tx, vehicle_id)
            if crew or open_dispatches:
                raise VehicleUnavailable(
                    "Vehicle is crewed or on a dispatch and cannot leave service.",
                    active_crew=crew,
                    open_dispatches=open_dispatches,
                )
            tx.update(
                "vehicles", vehicle_id,
                {"status": status, "updated_at": utc_now()},
                expect={"status": vehicle["status"]},
            )
        updated = tx.get("vehicles", vehicle_id)

    logger.info(f"[Fleet] Vehicle {vehicle['identifier']} service status -> {updated['status']}")
    return updated


# ============================================================================
# Users, roles, preferences
# ============================================================================

PREFERENCE_FIELDS = {
    "sound_enabled": bool,
    "sound_volume": float,
    "critical_alerts": bool,
    "high_priority_alerts": bool,
    "push_notifications": bool,
}

DEFAULT_PREFERENCES = {
    "sound_enabled": True,
    "sound_volume": 0.5,
    "critical_alerts": True,
    "high_priority_alerts": True,
    "push_notifications": True,
}


def create_user(
    full_name: str,
    organization_id: Optional[str] = None,
    roles: Iterable[str] = (),
    base_id: Optional[str] = None,
    badge_number: Optional[str] = None,
    phone: Optional[str] = None,
) -> Dict[str, Any]:
    roles = list(dict.fromkeys(roles))
    errors = {}
    if not (full_name or "").strip():
        errors["full_name"] = "Full name is required"
    unknown = [r for r in roles if r not in ALL_ROLES]
    if unknown:
        errors["roles"] = f"Unknown role(s): {', '.join(unknown)}"
    if errors:
        raise ValidationError(fields=errors)

    now = utc_now()
    user_id = new_id()
    with transaction() as tx:
        if organization_id and not tx.get("organizations", organization_id):
            raise NotFound("Organization not found.", organization_id=organization_id)
        user = tx.insert("users", {
            "id": user_id,
            "full_name": full_name.strip(),
            "organization_id": organization_id,
            "base_id": base_id,
            "badge_number": badge_number,
            "phone": phone,
            "is_active": 1,
            "created_at": now,
            "updated_at": now,
        })
        for role in roles:
            tx.insert("user_roles", {"id": new_id(), "user_id": user_id, "role": role, "created_at": now})
        tx.insert("user_preferences", {
            "id": new_id(),
            "user_id": user_id,
            "sound_enabled": 1,
            "sound_volume": DEFAULT_PREFERENCES["sound_volume"],
            "critical_alerts": 1,
            "high_priority_alerts": 1,
            "push_notifications": 1,
            "created_at": now,
            "updated_at": now,
        })
    user["roles"] = roles
    return user


def get_user(user_id: str) -> Dict[str, Any]:
    user = query_one("SELECT * FROM users WHERE id = ?", (user_id,))
    if not user:
        raise NotFound("User not found.", user_id=user_id)
    user["roles"] = [r["role"] for r in query(
        "SELECT role FROM user_roles WHERE user_id = ? ORDER BY role", (user_id,)
    )]
    return user


def list_users(organization_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if organization_id:
        users = query("SELECT * FROM users WHERE organization_id = ? ORDER BY full_name", (organization_id,))
    else:
        users = query("SELECT * FROM users ORDER BY full_name")
    roles: Dict[str, List[str]] = {}
    for r in query("SELECT user_id, role FROM user_roles ORDER BY role"):
        roles.setdefault(r["user_id"], []).append(r["role"])
    for user in users:
        user["roles"] = roles.get(user["id"], [])
    return users


def _preferences_from_row(row: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    prefs = dict(DEFAULT_PREFERENCES)
    if row:
        for key, cast in PREFERENCE_FIELDS.items():
            if row.get(key) is not None:
                prefs[key] = cast(row[key])
    return prefs


def get_user_preferences(user_id: str) -> Dict[str, Any]:
    row = query_one("SELECT * FROM user_preferences WHERE user_id = ?", (user_id,))
    return _preferences_from_row(row)


def update_user_preferences(user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    errors = {}
    values: Dict[str, Any] = {}
    for key, value in changes.items():
        if key not in PREFERENCE_FIELDS:
            errors[key] = "Unknown preference"
        elif key == "sound_volume":
            try:
                volume = float(value)
            except (TypeError, ValueError):
                errors[key] = "Volume must be a number between 0 and 1"
                continue
            if not 0.0 <= volume <= 1.0:
                errors[key] = "Volume must be a number between 0 and 1"
            else:
                values[key] = volume
        else:
            values[key] = 1 if value else 0
    if errors:
        raise ValidationError(fields=errors)

    now = utc_now()
    with transaction() as tx:
        if not tx.get("users", user_id):
            raise NotFound("User not found.", user_id=user_id)
        row = tx.fetchone("SELECT id FROM user_preferences WHERE user_id = ?", (user_id,))
        if row:
            if values:
                tx.update("user_preferences", row["id"], dict(values, updated_at=now))
        else:
            base = {k: (1 if v is True else v) for k, v in DEFAULT_PREFERENCES.items()}
            base.update(values)
            tx.insert("user_preferences", dict(base, id=new_id(), user_id=user_id, created_at=now, updated_at=now))
    return get_user_preferences(user_id)
