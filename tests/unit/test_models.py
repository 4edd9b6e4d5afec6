"""
Tests for domain types: feed validation, ids, categories, payload rules
and the cycle report.
"""

from datetime import datetime, timezone

import pytest

from stormwatch.models import (
    CycleReport,
    EnvironmentalSnapshot,
    FeedFamily,
    GeometryPayload,
    RasterPayload,
    TrackedEntity,
    categorize_by_wind,
    slugify,
    validate_feed,
)

NOW = datetime(2025, 8, 18, tzinfo=timezone.utc)


class TestValidateFeed:

    def test_accepts_string_family(self):
        assert validate_feed("gridded-weather", "wind") is FeedFamily.GRIDDED_WEATHER

    def test_unknown_family(self):
        with pytest.raises(ValueError, match="Unknown feed family"):
            validate_feed("satellite", "ir")

    def test_kind_from_other_family(self):
        with pytest.raises(ValueError, match="Unknown kind"):
            validate_feed(FeedFamily.OCEAN_FIELD, "cones")


def test_slugify_collapses_whitespace():
    assert slugify("Hurricane  Test") == "hurricane-test"
    assert slugify(" Tropical Storm Fernand ") == "tropical-storm-fernand"


def test_entity_id_derived_from_name():
    entity = TrackedEntity(
        name="Hurricane Erin", category="Category 4 Hurricane", wind_speed=130, pressure=945,
        latitude=28.1, longitude=-72.5, movement="NW", last_observed_at=NOW,
    )
    assert entity.id == "hurricane-erin"
    assert entity.active is True


@pytest.mark.parametrize("wind,expected", [
    (157, "Category 5 Hurricane"),
    (156, "Category 4 Hurricane"),
    (130, "Category 4 Hurricane"),
    (111, "Category 3 Hurricane"),
    (96, "Category 2 Hurricane"),
    (74, "Category 1 Hurricane"),
    (73, "Tropical Storm"),
    (39, "Tropical Storm"),
    (38, "Tropical Depression"),
])
def test_categorize_by_wind(wind, expected):
    assert categorize_by_wind(wind) == expected


class TestSnapshotPayloads:

    def test_track_requires_geometry(self):
        with pytest.raises(ValueError, match="GeometryPayload"):
            EnvironmentalSnapshot(
                family=FeedFamily.TRACK_GEOMETRY, kind="cones", timestamp=NOW,
                payload=RasterPayload(source_url="https://x"),
            )

    def test_raster_families_require_raster(self):
        with pytest.raises(ValueError, match="RasterPayload"):
            EnvironmentalSnapshot(
                family=FeedFamily.OCEAN_FIELD, kind="waves", timestamp=NOW,
                payload=GeometryPayload(),
            )

    def test_family_string_is_coerced(self):
        snapshot = EnvironmentalSnapshot(
            family="track-geometry", kind="tracks", timestamp=NOW, payload=GeometryPayload(),
        )
        assert snapshot.family is FeedFamily.TRACK_GEOMETRY

    def test_geometry_to_geojson(self):
        feature = {"type": "Feature", "properties": {}, "geometry": None}
        payload = GeometryPayload(features=(feature,))
        assert payload.to_geojson() == {"type": "FeatureCollection", "features": [feature]}


class TestCycleReport:

    def test_family_failed_only_when_nothing_succeeded(self):
        report = CycleReport(started_at=NOW)
        report.failed[FeedFamily.TRACK_GEOMETRY] = {"cones": "boom"}
        assert report.family_failed(FeedFamily.TRACK_GEOMETRY)
        report.succeeded[FeedFamily.TRACK_GEOMETRY] = ["tracks"]
        assert not report.family_failed(FeedFamily.TRACK_GEOMETRY)
        assert not report.family_failed(FeedFamily.OCEAN_FIELD)

    def test_to_dict_uses_family_values(self):
        report = CycleReport(started_at=NOW, manual=True)
        report.succeeded[FeedFamily.OCEAN_FIELD] = ["waves"]
        data = report.to_dict()
        assert data["succeeded"] == {"ocean-field": ["waves"]}
        assert data["success_count"] == 1
        assert data["manual"] is True
