"""
In-memory storage for local runs and tests.
"""

import asyncio
import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError, PersistenceConflictError
from shared.logging import get_logger
from ..domain.models import GeoObject, Map, Observer, Side, utc_now
from ..domain.query import GeoObjectQuery
from .interfaces import GeoObjectSource, ObserverLookup, ObserverStore


class InMemoryStorage(ObserverLookup, GeoObjectSource, ObserverStore):
    """Maps, sides, objects and observers kept in dictionaries.

    Observers are handed out as copies so that callers never share state
    with the store; the only way to change a stored rule-set is
    ``save_rules``.
    """

    def __init__(self):
        self.logger = get_logger("observer.persistence.memory")
        self._lock = asyncio.Lock()
        self.maps: Dict[int, Map] = {}
        self.sides: Dict[int, Side] = {}
        self.objects: Dict[int, GeoObject] = {}
        self.observers: Dict[int, Observer] = {}

    async def start(self):
        self.logger.info("In-memory storage started")

    async def stop(self):
        self.logger.info("In-memory storage stopped")

    async def health_check(self) -> bool:
        return True

    def add_map(self, map_: Map) -> Map:
        self.maps[map_.id] = map_
        return map_

    def add_side(self, side: Side) -> Side:
        self.sides[side.id] = side
        return side

    def add_object(self, obj: GeoObject) -> GeoObject:
        if obj.map_id not in self.maps:
            raise NotFoundError(f"Map {obj.map_id} not found", {"map_id": obj.map_id})
        self.objects[obj.id] = obj
        return obj

    def add_observer(self, observer: Observer) -> Observer:
        if observer.map_id not in self.maps:
            raise NotFoundError(f"Map {observer.map_id} not found", {"map_id": observer.map_id})
        self.observers[observer.id] = copy.deepcopy(observer)
        return observer

    def delete_map(self, map_id: int) -> bool:
        """Delete a map together with its objects and observers."""
        if self.maps.pop(map_id, None) is None:
            return False

        self.objects = {oid: obj for oid, obj in self.objects.items() if obj.map_id != map_id}
        self.observers = {oid: obs for oid, obs in self.observers.items() if obs.map_id != map_id}

        self.logger.info("Map deleted", map_id=map_id)
        return True

    async def find_by_access_token(self, token: str) -> Optional[Observer]:
        for observer in self.observers.values():
            if observer.access_token == token:
                return copy.deepcopy(observer)
        return None

    async def load(self, observer_id: int) -> Optional[Observer]:
        observer = self.observers.get(observer_id)
        return copy.deepcopy(observer) if observer else None

    async def save_rules(self, observer_id: int, rules: Dict[str, Any], expected_version: int) -> int:
        async with self._lock:
            observer = self.observers.get(observer_id)
            if observer is None or observer.version != expected_version:
                raise PersistenceConflictError(
                    observer_id,
                    expected_version,
                    observer.version if observer else None
                )

            observer.rules = copy.deepcopy(rules)
            observer.version += 1
            observer.updated_at = utc_now()
            return observer.version

    async def fetch(self, query: GeoObjectQuery) -> List[GeoObject]:
        if query.is_empty:
            return []
        return sorted(
            (obj for obj in self.objects.values() if query.matches(obj)),
            key=lambda obj: obj.id
        )

    async def find_active_by_map(self, map_id: int, now: datetime) -> List[GeoObject]:
        return await self.fetch(GeoObjectQuery.for_map(map_id, now))
