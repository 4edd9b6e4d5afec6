"""
Feed orchestrator.

Runs a refresh cycle across every adapter:

1. Fan-out fetch of every (adapter, kind) concurrently, failures isolated,
   each call under the tenacity retry policy
2. Fallback: when every track-geometry call failed, upsert storms from the
   NHC active KML if it is reachable, otherwise touch nothing
3. Materialize storms from successful track snapshots (features carrying
   ``STORMNAME`` and ``MAXWIND``); when several layers describe one storm the
   cones layer wins, then tracks, then warnings
4. Record a CycleReport

Adapter failures never escape a cycle. A defect inside fallback synthesis
raises FallbackSynthesisError, which run_cycle catches and records.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from stormwatch.data.adapters import ActiveStormFeed, SourceAdapter
from stormwatch.data.parsers import (
    NEXT_ADVISORY_HOURS,
    ActiveStorm,
    feature_position,
    parse_nhc_datetime,
    storm_display_name,
)
from stormwatch.data.store import SnapshotStore
from stormwatch.exceptions import FallbackSynthesisError, FetchError
from stormwatch.models import (
    FEED_KINDS,
    CycleReport,
    EnvironmentalSnapshot,
    FeedFamily,
    GeometryPayload,
    TrackedEntity,
    categorize_by_wind,
    utcnow,
)
from stormwatch.resilience import retry_policy

logger = logging.getLogger(__name__)

PROVENANCE_ARCGIS = "nhc-arcgis"
PROVENANCE_FALLBACK = "nhc-kml-fallback"

# Layers in order of preference when several describe the same storm
TRACK_KIND_RANK = {kind: rank for rank, kind in enumerate(FEED_KINDS[FeedFamily.TRACK_GEOMETRY])}


# =============================================================================
# Entity construction
# =============================================================================

def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _storm_type_from_wind(wind_mph: float) -> str:
    if wind_mph >= 74:
        return "HU"
    if wind_mph >= 39:
        return "TS"
    return "TD"


def _feature_rank(kind: str, feature: Dict[str, Any]) -> Tuple[int, float]:
    """Cones before tracks before warnings; within a layer the earliest forecast hour."""
    props = feature.get("properties") or {}
    tau = props.get("TAU", props.get("FHOUR"))
    return TRACK_KIND_RANK.get(kind, len(TRACK_KIND_RANK)), _number(tau)


def _parse_synoptic(value: Any, now: datetime) -> datetime:
    """SYNOPTIC arrives as epoch milliseconds or as an advisory time string."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        return parse_nhc_datetime(value, now=now)
    return now


def entity_from_feature(feature: Dict[str, Any], now: datetime) -> Optional[TrackedEntity]:
    """
    Build a TrackedEntity from an NHC feature.

    Returns None for features without ``STORMNAME``, without ``MAXWIND`` or
    without a position. Warning segments name the storm but carry no
    intensity and sit on the coastline, so they never describe its state.
    """
    props = feature.get("properties") or {}
    raw_name = props.get("STORMNAME")
    if not raw_name or not str(raw_name).strip():
        return None
    if props.get("MAXWIND") is None:
        return None

    position = feature_position(feature)
    if position is None:
        lat, lon = props.get("LAT"), props.get("LON")
        if lat is None or lon is None:
            return None
        position = (_number(lon), _number(lat))
    lon, lat = position

    wind = _number(props.get("MAXWIND"))
    direction = props.get("TCDIRECTION")
    speed = props.get("TCSPEED")
    movement = f"{direction} at {speed} mph" if direction and speed is not None else "Unknown"

    return TrackedEntity(
        name=storm_display_name(str(raw_name), props.get("STORMTYPE") or _storm_type_from_wind(wind)),
        category=categorize_by_wind(wind),
        wind_speed=wind,
        pressure=_number(props.get("MSLP")),
        latitude=lat,
        longitude=lon,
        movement=movement,
        last_observed_at=_parse_synoptic(props.get("SYNOPTIC"), now),
        next_expected_at=now + timedelta(hours=NEXT_ADVISORY_HOURS),
        forecast_track=feature,
        active=True,
        provenance=PROVENANCE_ARCGIS,
    )


def build_fallback_entity(storm: ActiveStorm) -> TrackedEntity:
    """TrackedEntity for a storm read from the secondary KML feed, tagged as fallback data."""
    return TrackedEntity(
        name=storm.name,
        category=storm.category,
        wind_speed=storm.wind_speed,
        pressure=storm.pressure,
        latitude=storm.latitude,
        longitude=storm.longitude,
        movement=storm.movement,
        last_observed_at=storm.last_update,
        next_expected_at=storm.next_update,
        forecast_track={
            "type": "Feature",
            "properties": {
                "STORMNAME": storm.name,
                "ATCF_ID": storm.atcf_id,
                "INTENSITY": storm.category,
                "SOURCE": "NHC_KML_LIVE",
                "SYNTHETIC_FALLBACK": True,
            },
            "geometry": {
                "type": "Point",
                "coordinates": [storm.longitude, storm.latitude],
            },
        },
        active=True,
        provenance=PROVENANCE_FALLBACK,
    )


# =============================================================================
# Orchestrator
# =============================================================================

class FeedOrchestrator:
    """
    Drives refresh cycles over a set of adapters.

    Args:
        store: Snapshot store shared with the adapters
        adapters: One adapter per feed family
        fallback_source: Secondary live source for track geometry
        fetch_attempts: Attempts per (adapter, kind), including the first
        fetch_backoff_seconds: Base of the exponential backoff between attempts
        fallback_builder: Turns a secondary-source storm into a TrackedEntity
        clock: Source of "now" (UTC)
    """

    def __init__(
        self,
        store: SnapshotStore,
        adapters: Sequence[SourceAdapter],
        fallback_source: Optional[ActiveStormFeed] = None,
        fetch_attempts: int = 2,
        fetch_backoff_seconds: float = 1.0,
        fallback_builder: Callable[[ActiveStorm], TrackedEntity] = build_fallback_entity,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.adapters = list(adapters)
        self.fallback_source = fallback_source
        self.fetch_attempts = fetch_attempts
        self.fetch_backoff_seconds = fetch_backoff_seconds
        self.fallback_builder = fallback_builder
        self.clock = clock
        self.last_report: Optional[CycleReport] = None

    def adapter_for(self, family: FeedFamily) -> Optional[SourceAdapter]:
        for adapter in self.adapters:
            if adapter.family == FeedFamily(family):
                return adapter
        return None

    async def fetch_with_retry(self, adapter: SourceAdapter, kind: str) -> EnvironmentalSnapshot:
        """One adapter call under the retry policy; the final failure propagates."""
        async for attempt in retry_policy(
            max_attempts=self.fetch_attempts,
            min_wait=self.fetch_backoff_seconds,
        ):
            with attempt:
                snapshot = await adapter.fetch(kind)
        return snapshot

    async def run_cycle(self, manual: bool = False) -> CycleReport:
        """
        Run one full cycle and return its report.

        Never raises for upstream failures; a fallback synthesis defect is
        logged and recorded on the report.
        """
        report = CycleReport(started_at=self.clock(), manual=manual)
        try:
            await self._run(report)
        except FallbackSynthesisError as e:
            logger.exception(f"Fallback synthesis failed: {e}")
            report.fallback_error = str(e)
        report.finished_at = self.clock()
        self.last_report = report

        logger.info(
            f"Refresh cycle{' (manual)' if manual else ''} complete: "
            f"{report.success_count} succeeded, {report.failure_count} failed, "
            f"{len(report.entities_upserted)} storm(s) upserted"
            f"{', fallback used' if report.fallback_used else ''}"
        )
        return report

    async def refresh_now(self) -> CycleReport:
        """Manual refresh: same fetch, fallback and materialize steps, awaited by the caller."""
        return await self.run_cycle(manual=True)

    async def _run(self, report: CycleReport):
        calls: List[Tuple[SourceAdapter, str]] = [
            (adapter, kind) for adapter in self.adapters for kind in adapter.kinds
        ]
        results = await asyncio.gather(
            *(self.fetch_with_retry(adapter, kind) for adapter, kind in calls),
            return_exceptions=True,
        )

        track_snapshots: List[EnvironmentalSnapshot] = []
        for (adapter, kind), result in zip(calls, results):
            family = adapter.family
            if isinstance(result, FetchError):
                logger.warning(f"{family.value}/{kind} fetch failed: {result}")
                report.failed.setdefault(family, {})[kind] = str(result)
            elif isinstance(result, Exception):
                logger.error(f"{family.value}/{kind} adapter error: {result!r}", exc_info=result)
                report.failed.setdefault(family, {})[kind] = repr(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                report.succeeded.setdefault(family, []).append(kind)
                if family == FeedFamily.TRACK_GEOMETRY:
                    track_snapshots.append(result)

        if report.family_failed(FeedFamily.TRACK_GEOMETRY):
            await self._apply_fallback(report)

        self._materialize(track_snapshots, report)

    async def _apply_fallback(self, report: CycleReport):
        if self.fallback_source is None:
            logger.warning("All track feeds failed and no secondary source is configured")
            return

        try:
            storms = await self.fallback_source.fetch_storms()
        except FetchError as e:
            logger.warning(
                f"All track feeds failed and secondary source is unreachable ({e}); "
                f"existing storms left untouched"
            )
            report.fallback_error = str(e)
            return

        try:
            entities = [self.fallback_builder(storm) for storm in storms]
        except Exception as e:
            raise FallbackSynthesisError(f"Could not build fallback storm: {e}") from e

        for entity in entities:
            self.store.upsert_entity(entity)
            report.entities_upserted.append(entity.id)
        report.fallback_used = True
        logger.info(f"Fallback: upserted {len(entities)} storm(s) from the active KML feed")

    def _materialize(self, snapshots: List[EnvironmentalSnapshot], report: CycleReport):
        now = self.clock()
        best: Dict[str, Tuple[Tuple[int, float], TrackedEntity]] = {}
        for snapshot in snapshots:
            if not isinstance(snapshot.payload, GeometryPayload):
                continue
            for feature in snapshot.payload.features:
                entity = entity_from_feature(feature, now)
                if entity is None:
                    continue
                rank = _feature_rank(snapshot.kind, feature)
                # Ties keep the first feature seen
                current = best.get(entity.id)
                if current is None or rank < current[0]:
                    best[entity.id] = (rank, entity)
        entities = {entity_id: entity for entity_id, (_, entity) in best.items()}

        for entity in entities.values():
            self.store.upsert_entity(entity)
            if entity.id not in report.entities_upserted:
                report.entities_upserted.append(entity.id)

        # Only a cycle where every track kind answered sees every live storm
        adapter = self.adapter_for(FeedFamily.TRACK_GEOMETRY)
        complete = adapter is not None and set(
            report.succeeded.get(FeedFamily.TRACK_GEOMETRY, ())
        ) == set(adapter.kinds)
        if not complete:
            return
        for existing in self.store.list_entities(active_only=True):
            if existing.id in entities:
                continue
            existing.active = False
            self.store.upsert_entity(existing)
            report.entities_deactivated.append(existing.id)
            logger.info(f"Storm {existing.id} no longer reported; marked inactive")
