"""
DISPATCH-CORE Realtime — Alerts

Builds the user-facing alert for a new dispatch or a new occurrence:
urgency and sound pattern scale with the occurrence priority, filtered by
the user's alert preferences.
"""
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings
from ..occurrences.lifecycle import PRIORITY_LABELS

# Tone frequencies (Hz) played in sequence per priority
SOUND_PATTERNS = {
    "critical": (880, 440, 880, 440, 880),
    "high": (660, 440, 660),
    "medium": (523, 523),
    "low": (440,),
}

# Seconds per tone
TONE_SECONDS = {"critical": 0.15}
DEFAULT_TONE_SECONDS = 0.2


@dataclass
class AlertPreferences:
    sound_enabled: bool = True
    sound_volume: float = 0.5
    critical_alerts: bool = True
    high_priority_alerts: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AlertPreferences":
        if not data:
            return cls(sound_volume=Settings.get("default_sound_volume"))
        return cls(
            sound_enabled=bool(data.get("sound_enabled", True)),
            sound_volume=float(data.get("sound_volume", Settings.get("default_sound_volume"))),
            critical_alerts=bool(data.get("critical_alerts", True)),
            high_priority_alerts=bool(data.get("high_priority_alerts", True)),
        )

    def allows(self, priority: str) -> bool:
        if priority == "critical":
            return self.critical_alerts
        if priority == "high":
            return self.high_priority_alerts
        return True


@dataclass
class Sound:
    frequencies: Tuple[int, ...]
    tone_seconds: float
    volume: float


@dataclass
class Alert:
    """One toast / sound for one logical transition."""

    key: Tuple[str, str]
    kind: str
    title: str
    body: str
    priority: str
    duration_ms: int
    variant: str
    requires_dismissal: bool
    occurrence_id: str
    dispatch_id: Optional[str] = None
    sound: Optional[Sound] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["key"] = list(self.key)
        if self.sound:
            data["sound"]["frequencies"] = list(self.sound.frequencies)
        return data


def urgency_for(priority: str) -> Dict[str, Any]:
    """Toast duration, styling and persistence for a priority."""
    if priority == "critical":
        return {
            "duration_ms": Settings.get("alert_duration_critical_ms"),
            "variant": "destructive",
            "requires_dismissal": True,
        }
    return {
        "duration_ms": Settings.get("alert_duration_default_ms"),
        "variant": "default",
        "requires_dismissal": False,
    }


def sound_for(priority: str, preferences: AlertPreferences) -> Optional[Sound]:
    if not preferences.sound_enabled:
        return None
    pattern = SOUND_PATTERNS.get(priority, SOUND_PATTERNS["medium"])
    return Sound(
        frequencies=pattern,
        tone_seconds=TONE_SECONDS.get(priority, DEFAULT_TONE_SECONDS),
        volume=max(0.0, min(1.0, preferences.sound_volume)),
    )


def _location(occurrence: Dict[str, Any]) -> str:
    return occurrence.get("location_address") or "Location not provided"


def build_dispatch_alert(
    dispatch: Dict[str, Any],
    occurrence: Dict[str, Any],
    preferences: AlertPreferences,
) -> Optional[Alert]:
    """Alert for a dispatch of the user's own vehicle, or None if muted."""
    priority = occurrence.get("priority") or "medium"
    if not preferences.allows(priority):
        return None
    label = PRIORITY_LABELS.get(priority, priority).upper()
    return Alert(
        key=(dispatch["id"], dispatch.get("status") or "dispatched"),
        kind="dispatch",
        title=f"NEW DISPATCH - {label}",
        body=f"{occurrence.get('code')}: {occurrence.get('title')}\n{_location(occurrence)}",
        priority=priority,
        occurrence_id=occurrence["id"],
        dispatch_id=dispatch["id"],
        sound=sound_for(priority, preferences),
        tags=[f"dispatch-{dispatch['id']}"],
        **urgency_for(priority),
    )


def build_occurrence_alert(
    occurrence: Dict[str, Any],
    preferences: AlertPreferences,
) -> Optional[Alert]:
    """Alert for a new occurrence on the user's dashboard, or None if muted."""
    priority = occurrence.get("priority") or "medium"
    if not preferences.allows(priority):
        return None
    label = PRIORITY_LABELS.get(priority, priority).upper()
    return Alert(
        key=(occurrence["id"], occurrence.get("status") or "pending"),
        kind="occurrence",
        title=f"NEW OCCURRENCE - {label}",
        body=f"{occurrence.get('code')}: {occurrence.get('title')}\n{_location(occurrence)}",
        priority=priority,
        occurrence_id=occurrence["id"],
        sound=sound_for(priority, preferences),
        tags=[f"occurrence-{occurrence['id']}"],
        **urgency_for(priority),
    )
