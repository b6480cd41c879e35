"""
Storage contracts consumed by the filter pipeline.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..domain.models import GeoObject, Observer
from ..domain.query import GeoObjectQuery


class ObserverLookup(ABC):
    """Resolves observers from their access token."""

    @abstractmethod
    async def find_by_access_token(self, token: str) -> Optional[Observer]:
        ...


class GeoObjectSource(ABC):
    """Executes object queries. Results are ordered by object id."""

    @abstractmethod
    async def fetch(self, query: GeoObjectQuery) -> List[GeoObject]:
        """Objects matching a composed query."""

    @abstractmethod
    async def find_active_by_map(self, map_id: int, now: datetime) -> List[GeoObject]:
        """Every object of the map that is not expired at ``now``."""


class ObserverStore(ABC):
    """Read-modify-write access to an observer's rule-set."""

    @abstractmethod
    async def load(self, observer_id: int) -> Optional[Observer]:
        """Fresh copy of the observer record, or None if it is gone."""

    @abstractmethod
    async def save_rules(self, observer_id: int, rules: Dict[str, Any], expected_version: int) -> int:
        """Replace the whole rule-set if the record is still at ``expected_version``.

        Returns the new version. Raises PersistenceConflictError when the
        version moved.
        """
