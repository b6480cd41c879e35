"""
Shared fixtures for Observer service tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from service_observer.app.domain.models import GeoObject, Geometry, GeometryType, Map, Observer, Side
from service_observer.app.engine.pipeline import FilterPipeline
from service_observer.app.engine.state_manager import StateManager
from service_observer.app.persistence.memory import InMemoryStorage
from service_observer.app.rules.catalog import default_catalog
from service_observer.app.rules.schema import ConfigSchemaBuilder
from service_observer.app.rules.validator import ConfigValidator
from shared.retry import RetryConfig

NOW = datetime(2025, 6, 2, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)

    def set(self, now: datetime):
        self.now = now


def point(lng: float = 30.5, lat: float = 50.4) -> Geometry:
    return Geometry(type=GeometryType.POINT, coordinates=[lng, lat])


@pytest.fixture
def clock():
    """Clock frozen at NOW."""
    return FrozenClock()


@pytest.fixture
def storage(clock):
    """Map 1 with objects 1-5 (1,2 on side A; 3,4,5 on side B), an untagged
    object 6, an expired object 8, and object 7 on another map."""
    store = InMemoryStorage()
    store.add_map(Map(id=1, title="Operations"))
    store.add_map(Map(id=2, title="Other"))
    store.add_side(Side(id=1, name="A", color="#ff0000"))
    store.add_side(Side(id=2, name="B", color="#0000ff"))

    created = clock() - timedelta(hours=1)
    for object_id, side_id in [(1, 1), (2, 1), (3, 2), (4, 2), (5, 2)]:
        store.add_object(GeoObject(
            id=object_id, map_id=1, name=f"Object {object_id}",
            geometry=point(), side_id=side_id, created_at=created
        ))

    store.add_object(GeoObject(id=6, map_id=1, name="Untagged", geometry=point(), created_at=created))
    store.add_object(GeoObject(id=7, map_id=2, name="Elsewhere", geometry=point(), created_at=created))
    store.add_object(GeoObject(
        id=8, map_id=1, name="Expired", geometry=point(), side_id=1, ttl=60, created_at=created
    ))
    return store


@pytest.fixture
def catalog(clock):
    return default_catalog(clock)


@pytest.fixture
def validator(catalog):
    return ConfigValidator(ConfigSchemaBuilder(catalog))


@pytest.fixture
def pipeline(catalog, validator, storage, clock):
    """Pipeline over the seeded storage without retry delays."""
    return FilterPipeline(
        catalog=catalog,
        validator=validator,
        source=storage,
        store=storage,
        state_manager=StateManager(storage),
        clock=clock,
        retry_config=RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)
    )


@pytest.fixture
def make_observer(storage):
    """Register an observer on map 1. The returned record is not shared with the store."""
    counter = {"next_id": 100}

    def factory(rules=None, map_id: int = 1, **kwargs) -> Observer:
        counter["next_id"] += 1
        observer = Observer(
            id=counter["next_id"],
            name=kwargs.pop("name", f"Observer {counter['next_id']}"),
            map_id=map_id,
            rules=rules or {},
            **kwargs
        )
        storage.add_observer(observer)
        return observer

    return factory
