"""
Integration tests for the STORMWATCH REST API.

Runs the FastAPI app against an injected StormService built from test
doubles; nothing leaves the process.
"""

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from stormwatch.exceptions import UpstreamUnavailable
from stormwatch.models import FeedFamily

from tests.doubles import FakeAdapter, FakeOracle, build_service, storm_feature


@pytest.fixture
def degraded_client(store, settings):
    """Weather and ocean feeds down, oracle failing."""
    adapters = [
        FakeAdapter(store, settings, FeedFamily.TRACK_GEOMETRY, features=[storm_feature()]),
        FakeAdapter(store, settings, FeedFamily.GRIDDED_WEATHER, error=UpstreamUnavailable("GFS down", source="gfs")),
        FakeAdapter(store, settings, FeedFamily.OCEAN_FIELD, error=UpstreamUnavailable("CMEMS down", source="cmems")),
    ]
    service = build_service(store, settings, adapters, oracle=FakeOracle(error=RuntimeError("oracle 500")))
    with TestClient(create_app(settings=settings, service=service)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Health and middleware
# ---------------------------------------------------------------------------

class TestHealth:

    def test_liveness(self, client):
        response = client.get("/api/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_request_id_generated(self, client):
        response = client.get("/api/health/live")
        assert response.headers.get("X-Request-ID")

    def test_request_id_echoed(self, client):
        response = client.get("/api/health/live", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


# ---------------------------------------------------------------------------
# Storms
# ---------------------------------------------------------------------------

class TestHurricanes:

    def test_empty_before_first_refresh(self, client):
        response = client.get("/api/hurricanes")
        assert response.status_code == 200
        assert response.json() == []

    def test_refresh_then_list(self, client):
        refresh = client.post("/api/refresh")
        assert refresh.status_code == 200
        body = refresh.json()
        assert body["success"] is True
        assert body["hurricanes_updated"] == ["hurricane-erin"]
        assert body["failed"] == {}

        storms = client.get("/api/hurricanes").json()
        assert [s["id"] for s in storms] == ["hurricane-erin"]
        assert storms[0]["name"] == "Hurricane Erin"
        assert storms[0]["is_active"] is True

    def test_get_by_id(self, client):
        client.post("/api/refresh")
        response = client.get("/api/hurricanes/hurricane-erin")
        assert response.status_code == 200
        assert response.json()["wind_speed"] == 130

    def test_unknown_id(self, client):
        response = client.get("/api/hurricanes/hurricane-nobody")
        assert response.status_code == 404
        assert "hurricane-nobody" in response.json()["detail"]


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------

class TestFeeds:

    def test_track_geometry_fetched_on_read(self, client):
        response = client.get("/api/nhc/cones")
        assert response.status_code == 200
        body = response.json()
        assert body["family"] == "track-geometry"
        assert body["geojson"]["type"] == "FeatureCollection"
        assert body["source_url"] is None

    def test_stored_snapshot_reused(self, client):
        first = client.get("/api/weather/wind").json()
        second = client.get("/api/weather/wind").json()
        assert first["id"] == second["id"]
        assert first["source_url"].endswith("/gridded-weather/wind")
        assert first["geojson"] is None

    def test_unknown_kind(self, client):
        response = client.get("/api/ocean/salinity")
        assert response.status_code == 400
        assert "Unknown kind" in response.json()["detail"]

    def test_upstream_failure(self, degraded_client):
        response = degraded_client.get("/api/ocean/waves")
        assert response.status_code == 502
        body = response.json()
        assert body["source"] == "cmems"
        assert body["reason"] == "CMEMS down"


# ---------------------------------------------------------------------------
# Predictions
# ---------------------------------------------------------------------------

class TestPredictions:

    def test_generate_and_read_back(self, client):
        client.post("/api/refresh")
        created = client.post("/api/hurricanes/hurricane-erin/prediction")
        assert created.status_code == 200
        body = created.json()
        assert body["hurricane_id"] == "hurricane-erin"
        assert len(body["path_prediction"]["coordinates"]) == 10
        assert body["landfall"]["location"] == "North Carolina Coast"
        assert body["model"] == "fake-oracle"

        latest = client.get("/api/hurricanes/hurricane-erin/prediction")
        assert latest.json()["id"] == body["id"]

        listed = client.get("/api/predictions", params={"hurricane_id": "hurricane-erin"})
        assert [p["id"] for p in listed.json()] == [body["id"]]

    def test_no_forecast_yet(self, client):
        client.post("/api/refresh")
        response = client.get("/api/hurricanes/hurricane-erin/prediction")
        assert response.status_code == 404

    def test_forecast_for_unknown_storm(self, client):
        response = client.post("/api/hurricanes/hurricane-nobody/prediction")
        assert response.status_code == 404

    def test_list_for_unknown_storm(self, client):
        response = client.get("/api/predictions", params={"hurricane_id": "hurricane-nobody"})
        assert response.status_code == 404

    def test_oracle_failure(self, degraded_client):
        degraded_client.post("/api/refresh")
        response = degraded_client.post("/api/hurricanes/hurricane-erin/prediction")
        assert response.status_code == 503
        assert response.json()["detail"] == "Prediction unavailable"
        assert degraded_client.get("/api/predictions").json() == []

    def test_intensification(self, client):
        client.post("/api/refresh")
        response = client.get("/api/hurricanes/hurricane-erin/intensification")
        assert response.status_code == 200
        assert response.json()["potential"] == "gradual"

    def test_intensification_degrades_to_steady(self, degraded_client):
        degraded_client.post("/api/refresh")
        body = degraded_client.get("/api/hurricanes/hurricane-erin/intensification").json()
        assert body["potential"] == "steady"
        assert body["confidence"] == 0.5


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

class TestStatus:

    def test_limited_before_refresh(self, client):
        body = client.get("/api/status").json()
        assert body["status"] == "limited"
        assert body["active_hurricanes"] == 0
        assert body["ai_predictions"] is True
        assert body["last_cycle"] is None

    def test_live_after_refresh(self, client):
        client.post("/api/refresh")
        body = client.get("/api/status").json()
        assert body["status"] == "live"
        assert {s["family"] for s in body["data_sources"]} == {
            "track-geometry", "gridded-weather", "ocean-field",
        }
        assert all(s["health"] == "operational" for s in body["data_sources"])
        assert body["last_cycle"]["manual"] is True

    def test_degraded_sources(self, degraded_client):
        refresh = degraded_client.post("/api/refresh").json()
        assert refresh["success"] is True
        assert set(refresh["failed"]) == {"gridded-weather", "ocean-field"}

        sources = {s["family"]: s for s in degraded_client.get("/api/status").json()["data_sources"]}
        assert sources["track-geometry"]["health"] == "operational"
        assert sources["gridded-weather"]["health"] == "unavailable"
        assert sources["ocean-field"]["health"] == "configured-but-unreachable"

    def test_status_does_not_fetch(self, client, healthy_adapters):
        client.get("/api/status")
        assert all(adapter.calls == [] for adapter in healthy_adapters)
