"""
Tests for the snapshot stores (in-memory and SQLAlchemy).

Covers:
- latest() picks the max timestamp, ties broken by insertion order
- history ordering and family/kind validation
- entity full-replace semantics and active filtering
- forecast ordering
- concurrent appends never collide
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from stormwatch.models import (
    EnvironmentalSnapshot,
    FeedFamily,
    ForecastRecord,
    GeometryPayload,
    IntensityForecast,
    LandfallAssessment,
    PathPrediction,
    RasterPayload,
)

from tests.doubles import make_entity

T0 = datetime(2025, 8, 18, 12, 0, tzinfo=timezone.utc)


def track_snapshot(timestamp, marker):
    return EnvironmentalSnapshot(
        family=FeedFamily.TRACK_GEOMETRY,
        kind="cones",
        timestamp=timestamp,
        payload=GeometryPayload(features=({"type": "Feature", "properties": {"m": marker}, "geometry": None},)),
        metadata={"marker": marker},
    )


def forecast(entity_id, created_at, analysis="a"):
    return ForecastRecord(
        entity_id=entity_id,
        path_prediction=PathPrediction(coordinates=((-70.0, 25.0),), time_points=("t0",)),
        intensity_forecast=IntensityForecast(wind_speeds=(120.0,), time_points=("t0",)),
        landfall=LandfallAssessment(),
        analysis=analysis,
        confidence=0.8,
        created_at=created_at,
        valid_until=created_at + timedelta(hours=120),
    )


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

class TestSnapshots:

    def test_latest_empty_is_none(self, any_store):
        assert any_store.latest(FeedFamily.TRACK_GEOMETRY, "cones") is None

    def test_append_assigns_id_and_sequence(self, any_store):
        first = any_store.append(track_snapshot(T0, "a"))
        second = any_store.append(track_snapshot(T0, "b"))
        assert first.id and second.id and first.id != second.id
        assert second.sequence > first.sequence

    def test_latest_uses_max_timestamp_not_insertion(self, any_store):
        any_store.append(track_snapshot(T0 + timedelta(hours=1), "newer"))
        any_store.append(track_snapshot(T0, "older-but-later-inserted"))
        latest = any_store.latest(FeedFamily.TRACK_GEOMETRY, "cones")
        assert latest.metadata["marker"] == "newer"

    def test_latest_tie_broken_by_most_recent_insertion(self, any_store):
        any_store.append(track_snapshot(T0, "first"))
        any_store.append(track_snapshot(T0, "second"))
        latest = any_store.latest(FeedFamily.TRACK_GEOMETRY, "cones")
        assert latest.metadata["marker"] == "second"

    def test_list_snapshots_newest_first(self, any_store):
        any_store.append(track_snapshot(T0, "a"))
        any_store.append(track_snapshot(T0 + timedelta(hours=2), "c"))
        any_store.append(track_snapshot(T0 + timedelta(hours=1), "b"))
        history = any_store.list_snapshots(FeedFamily.TRACK_GEOMETRY, "cones")
        assert [s.metadata["marker"] for s in history] == ["c", "b", "a"]

    def test_kinds_are_isolated(self, any_store):
        any_store.append(track_snapshot(T0, "cones"))
        assert any_store.latest(FeedFamily.TRACK_GEOMETRY, "tracks") is None

    def test_unknown_kind_rejected(self, any_store):
        with pytest.raises(ValueError):
            any_store.latest(FeedFamily.TRACK_GEOMETRY, "temperature")

    def test_raster_payload_roundtrip(self, any_store):
        stored = any_store.append(EnvironmentalSnapshot(
            family=FeedFamily.GRIDDED_WEATHER,
            kind="wind",
            timestamp=T0,
            payload=RasterPayload(source_url="https://bucket/gfs", tile_url="https://tiles/{z}"),
        ))
        latest = any_store.latest(FeedFamily.GRIDDED_WEATHER, "wind")
        assert latest.id == stored.id
        assert latest.payload.source_url == "https://bucket/gfs"
        assert latest.payload.tile_url == "https://tiles/{z}"
        assert latest.timestamp == T0


def test_concurrent_appends_get_unique_ids(store):
    def worker(n):
        for i in range(25):
            store.append(track_snapshot(T0, f"{n}-{i}"))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    history = store.list_snapshots(FeedFamily.TRACK_GEOMETRY, "cones")
    assert len(history) == 200
    assert len({s.id for s in history}) == 200
    assert len({s.sequence for s in history}) == 200


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class TestEntities:

    def test_upsert_replaces_whole_record(self, any_store):
        any_store.upsert_entity(make_entity(wind=130.0, movement="NW at 12 mph"))
        any_store.upsert_entity(make_entity(wind=115.0, movement="N at 10 mph"))
        entity = any_store.get_entity("hurricane-erin")
        assert entity.wind_speed == 115.0
        assert entity.movement == "N at 10 mph"
        assert len(any_store.list_entities()) == 1

    def test_get_unknown_is_none(self, any_store):
        assert any_store.get_entity("nope") is None

    def test_inactive_excluded_by_default(self, any_store):
        any_store.upsert_entity(make_entity())
        any_store.upsert_entity(make_entity(name="Tropical Storm Fernand", active=False))
        assert [e.id for e in any_store.list_entities()] == ["hurricane-erin"]
        assert len(any_store.list_entities(active_only=False)) == 2

    def test_returned_entity_is_a_copy(self, store):
        store.upsert_entity(make_entity())
        entity = store.get_entity("hurricane-erin")
        entity.wind_speed = 10.0
        assert store.get_entity("hurricane-erin").wind_speed == 130.0


# ---------------------------------------------------------------------------
# Forecasts
# ---------------------------------------------------------------------------

class TestForecasts:

    def test_latest_forecast_by_created_at(self, any_store):
        any_store.append_forecast(forecast("hurricane-erin", T0 + timedelta(hours=1), "newer"))
        any_store.append_forecast(forecast("hurricane-erin", T0, "older"))
        assert any_store.latest_forecast("hurricane-erin").analysis == "newer"

    def test_list_forecasts_filters_by_entity(self, any_store):
        any_store.append_forecast(forecast("hurricane-erin", T0))
        any_store.append_forecast(forecast("tropical-storm-fernand", T0))
        assert len(any_store.list_forecasts()) == 2
        assert [r.entity_id for r in any_store.list_forecasts("hurricane-erin")] == ["hurricane-erin"]

    def test_forecast_payload_roundtrip(self, any_store):
        stored = any_store.append_forecast(forecast("hurricane-erin", T0))
        record = any_store.latest_forecast("hurricane-erin")
        assert record.id == stored.id
        assert record.path_prediction.coordinates == ((-70.0, 25.0),)
        assert record.intensity_forecast.wind_speeds == (120.0,)
        assert record.landfall.probability == 0.0
        assert record.landfall.location is None

    def test_no_forecast_is_none(self, any_store):
        assert any_store.latest_forecast("hurricane-erin") is None


# ---------------------------------------------------------------------------
# SQL backend specifics
# ---------------------------------------------------------------------------

class TestSqlStore:

    def test_datetimes_come_back_utc_aware(self, sql_store):
        sql_store.append(track_snapshot(T0, "a"))
        latest = sql_store.latest(FeedFamily.TRACK_GEOMETRY, "cones")
        assert latest.timestamp.tzinfo is not None
        assert latest.timestamp == T0

    def test_geometry_and_metadata_persisted(self, sql_store):
        sql_store.append(track_snapshot(T0, "persisted"))
        latest = sql_store.latest(FeedFamily.TRACK_GEOMETRY, "cones")
        assert latest.metadata == {"marker": "persisted"}
        assert latest.payload.features[0]["properties"] == {"m": "persisted"}

    def test_entity_forecast_track_persisted(self, sql_store):
        track = {"type": "Feature", "properties": {"SYNTHETIC_FALLBACK": True}, "geometry": None}
        sql_store.upsert_entity(make_entity(forecast_track=track, provenance="nhc-kml-fallback"))
        entity = sql_store.get_entity("hurricane-erin")
        assert entity.forecast_track == track
        assert entity.provenance == "nhc-kml-fallback"
        assert entity.last_observed_at == datetime(2025, 8, 18, 21, 0, tzinfo=timezone.utc)
