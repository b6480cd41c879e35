"""
Unit tests for the Observer service HTTP surface.
"""

import pytest
from fastapi.testclient import TestClient

from service_observer.app.main import ObserverService
from service_observer.app.domain.models import GeoObject, Geometry, GeometryType
from service_observer.app.persistence.memory import InMemoryStorage
from shared.config import get_config


class TestObserverService:
    """Test cases for ObserverService."""

    @pytest.fixture
    def service(self, storage, clock):
        """ObserverService backed by the seeded in-memory storage."""
        config = get_config("observer", 8020, storage_backend="memory")
        return ObserverService(config=config, storage=storage, clock=clock)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        with TestClient(service.app) as client:
            yield client

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "observer"
        assert "observer_view" in data["capabilities"]

    def test_health_endpoint(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"memory": "ok"}

    def test_observer_view(self, client, make_observer):
        observer = make_observer({"ObjectIdRule": [1, 2]}, name="Scout", icon="scout.png")

        response = client.get(f"/observer/{observer.access_token}")

        assert response.status_code == 200
        data = response.json()
        assert data["observer"] == {"id": observer.id, "name": "Scout", "icon": "scout.png", "map_id": 1}
        assert data["access_blocked"] is False
        assert data["objects"]["type"] == "FeatureCollection"
        assert [f["properties"]["id"] for f in data["objects"]["features"]] == [1, 2]

    def test_observer_view_geojson_shapes(self, client, storage, make_observer):
        storage.add_object(GeoObject(
            id=20, map_id=1, name="Zone",
            geometry=Geometry(type=GeometryType.CIRCLE, coordinates=[30.0, 50.0], radius=250.0)
        ))
        storage.add_object(GeoObject(
            id=21, map_id=1, name="Road",
            geometry=Geometry(type=GeometryType.LINE, coordinates=[[30.0, 50.0], [30.1, 50.1]])
        ))
        observer = make_observer({"ObjectIdRule": [20, 21]})

        features = client.get(f"/observer/{observer.access_token}").json()["objects"]["features"]

        assert features[0]["geometry"]["type"] == "Point"
        assert features[0]["properties"]["radius"] == 250.0
        assert features[1]["geometry"]["type"] == "LineString"

    def test_observer_view_exhausted(self, client, make_observer):
        observer = make_observer({"request_limit": {"limit": 1}})

        first = client.get(f"/observer/{observer.access_token}").json()
        second = client.get(f"/observer/{observer.access_token}").json()

        assert len(first["objects"]["features"]) == 6
        assert second["objects"]["features"] == []
        assert second["access_blocked"] is True

    def test_observer_view_unknown_token(self, client):
        response = client.get("/observer/does-not-exist")

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NOT_FOUND"
        assert "does-not-exist" not in str(data)

    def test_list_rules(self, client):
        response = client.get("/rules")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 5
        assert [rule["name"] for rule in data["rules"]] == [
            "time_range", "time_limit", "request_limit", "ObjectIdRule", "SideIdRule"
        ]
        request_limit = data["rules"][2]
        assert request_limit["stateful"] is True
        assert request_limit["schema"]["required"] == ["limit"]

    def test_validate_rules_valid(self, client):
        response = client.post("/rules/validate", json={"rules": {"ObjectIdRule": [1, 2]}})

        assert response.status_code == 200
        assert response.json() == {"valid": True, "errors": []}

    def test_validate_rules_invalid(self, client):
        response = client.post("/rules/validate", json={"rules": {"unknown": 1}})

        data = response.json()
        assert data["valid"] is False
        assert data["errors"][0].startswith("[root]")

    def test_validate_rules_rejects_state(self, client):
        rules = {"request_limit": {"limit": 2, "_state": {"remaining": 99, "initialized_at": 1}}}

        data = client.post("/rules/validate", json={"rules": rules}).json()

        assert data["valid"] is False

    def test_validate_rules_not_an_object(self, client):
        data = client.post("/rules/validate", json={"rules": [1, 2]}).json()

        assert data == {"valid": False, "errors": ["Configuration must be an object"]}

    def test_metrics_endpoint(self, client, make_observer):
        observer = make_observer({})
        client.get(f"/observer/{observer.access_token}")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "observer_views_total" in response.text
        assert 'registered_rules 5.0' in response.text

    def test_memory_backend_selected_from_config(self):
        service = ObserverService(config=get_config("observer", 8020, storage_backend="memory"))

        assert isinstance(service.storage, InMemoryStorage)
