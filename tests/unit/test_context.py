"""
Tests for ForecastContextBuilder.
"""

from datetime import datetime, timedelta, timezone

from stormwatch.data.adapters import CMEMS_DATASETS, CMEMS_RESOLUTION, GFS_RESOLUTION
from stormwatch.forecast.context import (
    DEFAULTS,
    DEFAULT_AMBIENT_PRESSURE,
    DEFAULT_OCEAN_CURRENTS,
    DEFAULT_SEA_SURFACE_TEMPERATURE,
    DEFAULT_WIND_SHEAR,
    ForecastContextBuilder,
)
from stormwatch.models import EnvironmentalSnapshot, FeedFamily, RasterPayload

from tests.doubles import make_entity

T0 = datetime(2025, 8, 18, 12, tzinfo=timezone.utc)


def raster(kind, family=FeedFamily.OCEAN_FIELD, summary=None, at=T0, sequence=1):
    metadata = {"summary": summary} if summary is not None else {}
    return EnvironmentalSnapshot(
        family=family, kind=kind, timestamp=at,
        payload=RasterPayload(source_url="https://feeds.test"),
        metadata=metadata, sequence=sequence,
    )


def test_defaults_when_no_snapshots():
    context = ForecastContextBuilder().build(make_entity())
    assert context.sea_surface_temperature == DEFAULT_SEA_SURFACE_TEMPERATURE
    assert context.ambient_pressure == DEFAULT_AMBIENT_PRESSURE
    assert context.wind_shear == DEFAULT_WIND_SHEAR
    assert context.ocean_currents == DEFAULT_OCEAN_CURRENTS
    assert set(context.defaulted_fields) == {
        "sea_surface_temperature", "ambient_pressure", "wind_shear", "ocean_currents",
    }


def test_storm_fields_copied():
    entity = make_entity(name="Hurricane Test")
    context = ForecastContextBuilder().build(entity)
    assert context.entity_id == "hurricane-test"
    assert (context.wind_speed, context.pressure) == (130.0, 945.0)
    assert context.observed_at == entity.last_observed_at


def test_reference_only_snapshots_give_climatology():
    gfs = EnvironmentalSnapshot(
        family=FeedFamily.GRIDDED_WEATHER, kind="pressure", timestamp=T0,
        payload=RasterPayload(source_url="https://feeds.test/gfs.t12z.pgrb2.0p25.f000"),
        metadata={
            "source": "GFS", "resolution": GFS_RESOLUTION, "forecast_hour": 0,
            "cycle": "20250818/12", "variables": ["PRMSL"],
        },
    )
    cmems = EnvironmentalSnapshot(
        family=FeedFamily.OCEAN_FIELD, kind="currents", timestamp=T0,
        payload=RasterPayload(source_url="https://feeds.test/cmems"),
        metadata={
            "source": "CMEMS", "dataset": CMEMS_DATASETS["currents"]["dataset"],
            "variables": list(CMEMS_DATASETS["currents"]["variables"]),
            "resolution": CMEMS_RESOLUTION,
        },
    )
    context = ForecastContextBuilder().build(make_entity(), [gfs, cmems])
    assert set(context.defaulted_fields) == set(DEFAULTS)
    for name, value in DEFAULTS.items():
        assert getattr(context, name) == value


def test_summary_aliases_and_partial_defaults():
    snapshots = [
        raster("waves", summary={"sst": "29.4", "currents": "Loop Current eddy"}),
        raster("pressure", family=FeedFamily.GRIDDED_WEATHER, summary={"mslp": 1008}),
    ]
    context = ForecastContextBuilder().build(make_entity(), snapshots)
    assert context.sea_surface_temperature == 29.4
    assert context.ambient_pressure == 1008.0
    assert context.ocean_currents == "Loop Current eddy"
    assert context.defaulted_fields == ("wind_shear",)


def test_newest_snapshot_wins_and_bad_values_skipped():
    snapshots = [
        raster("waves", summary={"sst": 27.0}, at=T0 - timedelta(hours=6)),
        raster("currents", summary={"sst": 30.1}, at=T0),
        raster("currents", summary={"sst": "n/a"}, at=T0, sequence=2),
        None,
    ]
    context = ForecastContextBuilder().build(make_entity(), snapshots)
    assert context.sea_surface_temperature == 30.1


def test_same_inputs_same_context():
    builder = ForecastContextBuilder()
    snapshots = [raster("waves", summary={"shear": 14})]
    entity = make_entity()
    assert builder.build(entity, snapshots) == builder.build(entity, snapshots)
