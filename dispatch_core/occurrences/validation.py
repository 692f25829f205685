"""
DISPATCH-CORE Occurrences — Field Validation

validate_occurrence_fields() returns a cleaned copy of the form data or
raises ValidationError listing every offending field at once.
"""
from typing import Any, Dict

from ..errors import ValidationError
from .lifecycle import OCCURRENCE_TYPES, PRIORITIES

# field: (max length, label)
TEXT_LIMITS = {
    "description": (2000, "Description"),
    "caller_name": (100, "Caller name"),
    "caller_phone": (20, "Caller phone"),
    "location_address": (300, "Address"),
    "location_reference": (200, "Reference"),
}

TITLE_MIN = 5
TITLE_MAX = 200


def _coordinate(value: Any, low: float, high: float, label: str, field: str, errors: Dict[str, str]):
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        errors[field] = f"{label} must be a number"
        return None
    if not low <= number <= high:
        errors[field] = f"{label} must be between {low:g} and {high:g}"
        return None
    return number


def validate_occurrence_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    fields = fields or {}
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    organization_id = fields.get("organization_id")
    if not organization_id:
        errors["organization_id"] = "Organization is required"
    cleaned["organization_id"] = organization_id

    occurrence_type = fields.get("type")
    if not occurrence_type:
        errors["type"] = "Type is required"
    elif occurrence_type not in OCCURRENCE_TYPES:
        errors["type"] = f"Type must be one of: {', '.join(OCCURRENCE_TYPES)}"
    cleaned["type"] = occurrence_type

    priority = fields.get("priority")
    if not priority:
        errors["priority"] = "Priority is required"
    elif priority not in PRIORITIES:
        errors["priority"] = f"Priority must be one of: {', '.join(PRIORITIES)}"
    cleaned["priority"] = priority

    title = fields.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if len(title) < TITLE_MIN:
        errors["title"] = f"Title must be at least {TITLE_MIN} characters"
    elif len(title) > TITLE_MAX:
        errors["title"] = f"Title must be at most {TITLE_MAX} characters"
    cleaned["title"] = title

    for field, (limit, label) in TEXT_LIMITS.items():
        value = fields.get(field)
        if value is None:
            cleaned[field] = None
            continue
        if not isinstance(value, str):
            errors[field] = f"{label} must be text"
            continue
        value = value.strip()
        if len(value) > limit:
            errors[field] = f"{label} must be at most {limit} characters"
        cleaned[field] = value or None

    cleaned["latitude"] = _coordinate(fields.get("latitude"), -90, 90, "Latitude", "latitude", errors)
    cleaned["longitude"] = _coordinate(fields.get("longitude"), -180, 180, "Longitude", "longitude", errors)

    if errors:
        raise ValidationError(fields=errors)
    return cleaned
