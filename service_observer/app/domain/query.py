"""
Composable predicate over a map's geo objects.

Rules contribute to a ``GeoObjectQuery`` during the predicate phase; the
object source turns the finished query into SQL (PostgreSQL) or evaluates
it directly (in-memory storage). Every restriction narrows the query:
restricting ids twice keeps the intersection, never the union.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import FrozenSet, Iterable, Optional

from .models import GeoObject


def _positive_ids(values: Iterable) -> FrozenSet[int]:
    ids = set()
    for value in values:
        if isinstance(value, bool):
            continue
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number > 0 and number == value:
            ids.add(number)
    return frozenset(ids)


@dataclass(frozen=True)
class GeoObjectQuery:
    """Immutable predicate: map scope + activity instant + optional restrictions."""
    map_id: int
    active_at: datetime
    object_ids: Optional[FrozenSet[int]] = None
    side_ids: Optional[FrozenSet[int]] = None
    match_nothing: bool = False

    @classmethod
    def for_map(cls, map_id: int, active_at: datetime) -> "GeoObjectQuery":
        """Base predicate: objects of the map that are not expired at ``active_at``."""
        return cls(map_id=map_id, active_at=active_at)

    def with_object_ids(self, ids: Iterable) -> "GeoObjectQuery":
        """Restrict to the given object ids. Non-positive or non-integer ids are ignored."""
        allowed = _positive_ids(ids)
        if not allowed:
            return self
        if self.object_ids is not None:
            allowed = self.object_ids & allowed
        return replace(self, object_ids=allowed)

    def with_side_ids(self, ids: Iterable) -> "GeoObjectQuery":
        """Restrict to objects tagged with one of the given sides."""
        allowed = _positive_ids(ids)
        if not allowed:
            return self
        if self.side_ids is not None:
            allowed = self.side_ids & allowed
        return replace(self, side_ids=allowed)

    def nothing(self) -> "GeoObjectQuery":
        """Always-false predicate."""
        return replace(self, match_nothing=True)

    @property
    def is_empty(self) -> bool:
        """True when no object can match."""
        return (
            self.match_nothing
            or (self.object_ids is not None and not self.object_ids)
            or (self.side_ids is not None and not self.side_ids)
        )

    def matches(self, obj: GeoObject) -> bool:
        if self.is_empty:
            return False
        if obj.map_id != self.map_id or not obj.is_active(self.active_at):
            return False
        if self.object_ids is not None and obj.id not in self.object_ids:
            return False
        if self.side_ids is not None and obj.side_id not in self.side_ids:
            return False
        return True
