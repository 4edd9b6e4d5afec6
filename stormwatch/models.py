"""
Domain types for STORMWATCH.

Tracked storms, immutable environmental snapshots, forecast records and
the derived system status view.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

Bounds = Tuple[float, float, float, float]  # min_lon, min_lat, max_lon, max_lat
GLOBAL_BOUNDS: Bounds = (-180.0, -90.0, 180.0, 90.0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedFamily(str, Enum):
    """Upstream data categories."""
    TRACK_GEOMETRY = "track-geometry"
    GRIDDED_WEATHER = "gridded-weather"
    OCEAN_FIELD = "ocean-field"


FEED_KINDS: Dict[FeedFamily, Tuple[str, ...]] = {
    FeedFamily.TRACK_GEOMETRY: ("cones", "tracks", "warnings"),
    FeedFamily.GRIDDED_WEATHER: ("temperature", "pressure", "wind"),
    FeedFamily.OCEAN_FIELD: ("currents", "waves"),
}


def validate_feed(family: Union[FeedFamily, str], kind: str) -> FeedFamily:
    """Coerce ``family`` to a FeedFamily and reject kinds it does not carry."""
    try:
        family = FeedFamily(family)
    except ValueError:
        raise ValueError(f"Unknown feed family: {family}") from None
    if kind not in FEED_KINDS[family]:
        raise ValueError(
            f"Unknown kind '{kind}' for {family.value}. Valid: {list(FEED_KINDS[family])}"
        )
    return family


def slugify(name: str) -> str:
    """Stable entity id from a storm name: 'Hurricane Erin' -> 'hurricane-erin'."""
    return re.sub(r"\s+", "-", name.strip().lower())


def categorize_by_wind(wind_mph: float) -> str:
    """Saffir-Simpson label from sustained wind in mph."""
    if wind_mph >= 157:
        return "Category 5 Hurricane"
    if wind_mph >= 130:
        return "Category 4 Hurricane"
    if wind_mph >= 111:
        return "Category 3 Hurricane"
    if wind_mph >= 96:
        return "Category 2 Hurricane"
    if wind_mph >= 74:
        return "Category 1 Hurricane"
    if wind_mph >= 39:
        return "Tropical Storm"
    return "Tropical Depression"


# ============================================================================
# Tracked storms
# ============================================================================

@dataclass
class TrackedEntity:
    """A tracked storm and its latest observed state."""
    name: str
    category: str
    wind_speed: float  # mph
    pressure: float  # mb
    latitude: float
    longitude: float
    movement: str
    last_observed_at: datetime
    next_expected_at: Optional[datetime] = None
    forecast_track: Optional[Dict[str, Any]] = None
    active: bool = True
    provenance: str = "unknown"
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = slugify(self.name)


# ============================================================================
# Environmental snapshots
# ============================================================================

@dataclass(frozen=True)
class GeometryPayload:
    """GeoJSON FeatureCollection from a track-geometry feed."""
    features: Tuple[Dict[str, Any], ...] = ()
    tag: str = "geometry"

    def to_geojson(self) -> Dict[str, Any]:
        return {"type": "FeatureCollection", "features": list(self.features)}


@dataclass(frozen=True)
class RasterPayload:
    """Reference to a gridded raster product; the grid itself stays upstream."""
    source_url: str
    cog_url: Optional[str] = None
    tile_url: Optional[str] = None
    tag: str = "raster"


Payload = Union[GeometryPayload, RasterPayload]


@dataclass(frozen=True)
class EnvironmentalSnapshot:
    """One immutable fetch result for a (family, kind) at a point in time."""
    family: FeedFamily
    kind: str
    timestamp: datetime
    payload: Payload
    bounds: Bounds = GLOBAL_BOUNDS
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: str = ""
    sequence: int = 0

    def __post_init__(self):
        validate_feed(self.family, self.kind)
        object.__setattr__(self, "family", FeedFamily(self.family))
        expected = GeometryPayload if self.family == FeedFamily.TRACK_GEOMETRY else RasterPayload
        if not isinstance(self.payload, expected):
            raise ValueError(
                f"{self.family.value} snapshots carry {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )


# ============================================================================
# Forecasts
# ============================================================================

LANDFALL_DETAIL_THRESHOLD = 0.3
DEFAULT_CONFIDENCE = 0.7
FORECAST_VALIDITY_HOURS = 120


@dataclass(frozen=True)
class PathPrediction:
    coordinates: Tuple[Tuple[float, float], ...] = ()  # (lon, lat)
    time_points: Tuple[str, ...] = ()
    confidence_level: float = DEFAULT_CONFIDENCE


@dataclass(frozen=True)
class IntensityForecast:
    wind_speeds: Tuple[float, ...] = ()
    pressures: Tuple[float, ...] = ()
    categories: Tuple[str, ...] = ()
    time_points: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LandfallAssessment:
    probability: float = 0.0
    location: Optional[str] = None
    time: Optional[str] = None


@dataclass(frozen=True)
class ForecastRecord:
    """A stored forecast for one tracked storm."""
    entity_id: str
    path_prediction: PathPrediction
    intensity_forecast: IntensityForecast
    landfall: LandfallAssessment
    analysis: str
    confidence: float
    created_at: datetime
    valid_until: datetime
    model: str = ""
    id: str = ""
    sequence: int = 0


class Trend(str, Enum):
    RAPID = "rapid"
    GRADUAL = "gradual"
    STEADY = "steady"
    WEAKENING = "weakening"


@dataclass(frozen=True)
class IntensificationTrend:
    trend: Trend
    rationale: str
    confidence: float


# ============================================================================
# Prediction context
# ============================================================================

@dataclass(frozen=True)
class PredictionContext:
    """Bounded input to the forecast oracle."""
    entity_id: str
    name: str
    category: str
    wind_speed: float
    pressure: float
    latitude: float
    longitude: float
    movement: str
    observed_at: datetime
    sea_surface_temperature: float  # degC
    ambient_pressure: float  # hPa
    wind_shear: float  # knots
    ocean_currents: str
    defaulted_fields: Tuple[str, ...] = ()


# ============================================================================
# Status
# ============================================================================

class FeedHealth(str, Enum):
    OPERATIONAL = "operational"
    CONFIGURED_BUT_UNREACHABLE = "configured-but-unreachable"
    MISSING_CREDENTIALS = "missing-credentials"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class FamilyStatus:
    family: FeedFamily
    health: FeedHealth
    last_update: Optional[datetime]
    configured: bool
    message: str


@dataclass(frozen=True)
class SystemStatusView:
    active_entities: int
    families: Tuple[FamilyStatus, ...]
    status: str  # "live" | "limited"
    oracle_configured: bool
    last_cycle: Optional[Dict[str, Any]] = None
    circuit_breakers: Optional[Dict[str, Any]] = None

    def family(self, family: FeedFamily) -> FamilyStatus:
        for status in self.families:
            if status.family == family:
                return status
        raise KeyError(family)


@dataclass
class CycleReport:
    """Outcome of one refresh cycle."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    succeeded: Dict[FeedFamily, List[str]] = field(default_factory=dict)
    failed: Dict[FeedFamily, Dict[str, str]] = field(default_factory=dict)
    entities_upserted: List[str] = field(default_factory=list)
    entities_deactivated: List[str] = field(default_factory=list)
    fallback_used: bool = False
    fallback_error: Optional[str] = None
    manual: bool = False

    @property
    def success_count(self) -> int:
        return sum(len(kinds) for kinds in self.succeeded.values())

    @property
    def failure_count(self) -> int:
        return sum(len(kinds) for kinds in self.failed.values())

    def family_failed(self, family: FeedFamily) -> bool:
        """True when every call of ``family`` failed in this cycle."""
        return bool(self.failed.get(family)) and not self.succeeded.get(family)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "succeeded": {f.value: list(k) for f, k in self.succeeded.items()},
            "failed": {f.value: dict(k) for f, k in self.failed.items()},
            "entities_upserted": list(self.entities_upserted),
            "entities_deactivated": list(self.entities_deactivated),
            "fallback_used": self.fallback_used,
            "fallback_error": self.fallback_error,
            "manual": self.manual,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
        }
