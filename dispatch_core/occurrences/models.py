"""
DISPATCH-CORE Occurrences — Query Helpers
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..errors import NotFound
from ..store.db import query, query_one
from .lifecycle import TERMINAL_STATUSES

OCCURRENCE_SELECT = """
    SELECT o.*, org.code AS organization_code, org.name AS organization_name,
           u.full_name AS created_by_name
    FROM occurrences o
    JOIN organizations org ON org.id = o.organization_id
    LEFT JOIN users u ON u.id = o.created_by
"""


def _as_set(value) -> FrozenSet[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        return frozenset(v.strip() for v in value.split(",") if v.strip())
    return frozenset(value)


@dataclass(frozen=True)
class OccurrenceFilter:
    """Dashboard / list filter. Empty sets mean "any"."""

    organization_id: Optional[str] = None
    statuses: FrozenSet[str] = field(default_factory=frozenset)
    priorities: FrozenSet[str] = field(default_factory=frozenset)
    types: FrozenSet[str] = field(default_factory=frozenset)
    search: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    active_only: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OccurrenceFilter":
        data = data or {}
        return cls(
            organization_id=data.get("organization_id") or None,
            statuses=_as_set(data.get("statuses") or data.get("status")),
            priorities=_as_set(data.get("priorities") or data.get("priority")),
            types=_as_set(data.get("types") or data.get("type")),
            search=(data.get("search") or "").strip() or None,
            date_from=data.get("date_from") or None,
            date_to=data.get("date_to") or None,
            active_only=bool(data.get("active_only") or data.get("active")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "statuses": sorted(self.statuses),
            "priorities": sorted(self.priorities),
            "types": sorted(self.types),
            "search": self.search,
            "date_from": self.date_from,
            "date_to": self.date_to,
            "active_only": self.active_only,
        }

    def matches(self, occurrence: Dict[str, Any]) -> bool:
        """Same predicate as to_sql(), applied to one row."""
        if self.organization_id and occurrence.get("organization_id") != self.organization_id:
            return False
        if self.active_only and occurrence.get("status") in TERMINAL_STATUSES:
            return False
        if self.statuses and occurrence.get("status") not in self.statuses:
            return False
        if self.priorities and occurrence.get("priority") not in self.priorities:
            return False
        if self.types and occurrence.get("type") not in self.types:
            return False
        created = occurrence.get("created_at") or ""
        if self.date_from and created < self.date_from:
            return False
        if self.date_to and created > self.date_to:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = " ".join(
                str(occurrence.get(k) or "") for k in ("code", "title", "location_address")
            ).lower()
            if needle not in haystack:
                return False
        return True

    def to_sql(self) -> Tuple[str, List[Any]]:
        conditions = []
        params: List[Any] = []
        if self.organization_id:
            conditions.append("o.organization_id = ?")
            params.append(self.organization_id)
        if self.active_only:
            conditions.append("o.status NOT IN ('completed', 'cancelled')")
        for column, values in (("status", self.statuses), ("priority", self.priorities), ("type", self.types)):
            if values:
                ordered = sorted(values)
                conditions.append(f"o.{column} IN ({', '.join('?' for _ in ordered)})")
                params.extend(ordered)
        if self.date_from:
            conditions.append("o.created_at >= ?")
            params.append(self.date_from)
        if self.date_to:
            conditions.append("o.created_at <= ?")
            params.append(self.date_to)
        if self.search:
            conditions.append(
                "(LOWER(o.code) LIKE ? OR LOWER(o.title) LIKE ? OR LOWER(COALESCE(o.location_address, '')) LIKE ?)"
            )
            like = f"%{self.search.lower()}%"
            params.extend([like, like, like])
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        return where, params


def get_occurrence(occurrence_id: str) -> Dict[str, Any]:
    occurrence = query_one(OCCURRENCE_SELECT + " WHERE o.id = ?", (occurrence_id,))
    if not occurrence:
        raise NotFound("Occurrence not found.", occurrence_id=occurrence_id)
    return occurrence


def list_occurrences(
    occurrence_filter: Optional[OccurrenceFilter] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Occurrences matching the filter, newest first."""
    where, params = (occurrence_filter or OccurrenceFilter()).to_sql()
    return query(
        OCCURRENCE_SELECT + where + " ORDER BY o.created_at DESC, o.id LIMIT ? OFFSET ?",
        params + [limit, offset],
    )


def list_active_occurrences(occurrence_filter: Optional[OccurrenceFilter] = None) -> List[Dict[str, Any]]:
    """Non-terminal occurrences matching the filter, newest first."""
    base = occurrence_filter or OccurrenceFilter()
    active = replace(base, active_only=True)
    return list_occurrences(active, limit=1000)


def count_occurrences(occurrence_filter: Optional[OccurrenceFilter] = None) -> int:
    where, params = (occurrence_filter or OccurrenceFilter()).to_sql()
    row = query_one("SELECT COUNT(*) AS n FROM occurrences o" + where, params)
    return row["n"] if row else 0
