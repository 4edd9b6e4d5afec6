"""
Prediction engine.

Sends a PredictionContext to the oracle and turns whatever comes back into a
well-formed ForecastRecord:

- every field has a typed default (empty arrays, 0.7 confidence, 0 landfall
  probability, "Analysis not available")
- confidence and probability are clamped to [0, 1]
- coordinates that are not numeric (lon, lat) pairs are dropped, and the
  same time point is dropped from every intensity series
- present arrays are truncated to their shortest common length and the
  intensity series shares the path's time points
- landfall location/time are kept only above LANDFALL_DETAIL_THRESHOLD
- created_at/valid_until are stamped locally

An oracle failure raises PredictionUnavailable and stores nothing.
"""

import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from stormwatch.data.store import SnapshotStore
from stormwatch.exceptions import PredictionUnavailable
from stormwatch.forecast.oracle import PredictionOracle
from stormwatch.models import (
    DEFAULT_CONFIDENCE,
    FORECAST_VALIDITY_HOURS,
    LANDFALL_DETAIL_THRESHOLD,
    ForecastRecord,
    IntensificationTrend,
    IntensityForecast,
    LandfallAssessment,
    PathPrediction,
    PredictionContext,
    TrackedEntity,
    Trend,
    utcnow,
)

logger = logging.getLogger(__name__)

ANALYSIS_NOT_AVAILABLE = "Analysis not available"
TREND_FAILURE_RATIONALE = "Unable to analyze due to technical error"
TREND_FAILURE_CONFIDENCE = 0.5


# =============================================================================
# Response coercion
# =============================================================================

def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _probability(value: Any, default: float) -> float:
    number = _as_float(value)
    if number is None:
        return default
    return min(1.0, max(0.0, number))


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    section = data.get(key)
    return section if isinstance(section, dict) else {}


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _numeric_prefix(values: Sequence[Any]) -> List[float]:
    """Leading run of numeric values; stops at the first bad entry so indexes stay aligned."""
    result = []
    for value in values:
        number = _as_float(value)
        if number is None:
            break
        result.append(number)
    return result


def _text_prefix(values: Sequence[Any]) -> List[str]:
    result = []
    for value in values:
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            break
        result.append(str(value))
    return result


def _coordinate(value: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        return None
    lon, lat = _as_float(value[0]), _as_float(value[1])
    if lon is None or lat is None:
        return None
    return lon, lat


def parse_path(
    section: Dict[str, Any],
) -> Tuple[List[Tuple[float, float]], List[str], Optional[List[int]], float]:
    """
    Valid path coordinates, their time points, and the indexes they were
    kept at. ``kept`` is None when no coordinate survived, so callers leave
    the other series untouched.
    """
    raw_coords = _list(section.get("coordinates"))
    raw_times = _text_prefix(_list(section.get("timePoints")))

    coordinates, kept = [], []
    for index, raw in enumerate(raw_coords):
        coordinate = _coordinate(raw)
        if coordinate is None:
            continue
        coordinates.append(coordinate)
        kept.append(index)

    confidence = _probability(section.get("confidenceLevel"), DEFAULT_CONFIDENCE)
    if not coordinates:
        return coordinates, raw_times, None, confidence
    return coordinates, select(raw_times, kept), kept, confidence


def select(values: Sequence[Any], indexes: Sequence[int]) -> List[Any]:
    """Values at ``indexes`` (ascending); indexes past the end are skipped."""
    return [values[i] for i in indexes if i < len(values)]


def align(*arrays: List[Any]) -> List[List[Any]]:
    """Truncate every non-empty array to the shortest non-empty length."""
    lengths = [len(a) for a in arrays if a]
    if not lengths:
        return [list(a) for a in arrays]
    n = min(lengths)
    return [list(a[:n]) for a in arrays]


def parse_forecast_response(
    data: Dict[str, Any],
) -> Tuple[PathPrediction, IntensityForecast, LandfallAssessment, str, float]:
    """Validate an untrusted oracle forecast, substituting defaults field by field."""
    coordinates, path_times, kept, path_confidence = parse_path(_section(data, "pathPrediction"))

    intensity = _section(data, "intensityForecast")
    winds = _numeric_prefix(_list(intensity.get("windSpeeds")))
    pressures = _numeric_prefix(_list(intensity.get("pressures")))
    categories = _text_prefix(_list(intensity.get("categories")))
    intensity_times = _text_prefix(_list(intensity.get("timePoints")))

    # Drop the same time points from every series that the path dropped
    if kept is not None:
        winds, pressures, categories, intensity_times = (
            select(series, kept) for series in (winds, pressures, categories, intensity_times)
        )

    coordinates, path_times, winds, pressures, categories, intensity_times = align(
        coordinates, path_times, winds, pressures, categories, intensity_times
    )
    if path_times and (winds or pressures or categories or intensity_times):
        intensity_times = list(path_times)

    landfall_section = _section(data, "landfall")
    probability = _probability(landfall_section.get("probability"), 0.0)
    location = time = None
    if probability > LANDFALL_DETAIL_THRESHOLD:
        raw_location = landfall_section.get("estimatedLocation", landfall_section.get("location"))
        raw_time = landfall_section.get("estimatedTime", landfall_section.get("time"))
        location = str(raw_location) if raw_location else None
        time = str(raw_time) if raw_time else None

    analysis = data.get("analysis")
    if not isinstance(analysis, str) or not analysis.strip():
        analysis = ANALYSIS_NOT_AVAILABLE

    return (
        PathPrediction(
            coordinates=tuple(coordinates),
            time_points=tuple(path_times),
            confidence_level=path_confidence,
        ),
        IntensityForecast(
            wind_speeds=tuple(winds),
            pressures=tuple(pressures),
            categories=tuple(categories),
            time_points=tuple(intensity_times),
        ),
        LandfallAssessment(probability=probability, location=location, time=time),
        analysis,
        _probability(data.get("confidence"), DEFAULT_CONFIDENCE),
    )


def parse_trend_response(data: Dict[str, Any]) -> IntensificationTrend:
    raw = data.get("potential", data.get("trend"))
    try:
        trend = Trend(str(raw).strip().lower())
    except ValueError:
        trend = Trend.STEADY
    rationale = data.get("reasoning", data.get("rationale"))
    if not isinstance(rationale, str) or not rationale.strip():
        rationale = ANALYSIS_NOT_AVAILABLE
    return IntensificationTrend(
        trend=trend,
        rationale=rationale,
        confidence=_probability(data.get("confidence"), DEFAULT_CONFIDENCE),
    )


# =============================================================================
# Engine
# =============================================================================

class PredictionEngine:
    """
    Oracle-backed forecasting for tracked storms.

    Args:
        store: Receives every successfully generated ForecastRecord
        oracle: PredictionOracle, or None when no oracle is configured
        timeout_seconds: Upper bound on a single oracle call
        validity_hours: Forecast validity window
        clock: Source of "now" (UTC)
    """

    def __init__(
        self,
        store: SnapshotStore,
        oracle: Optional[PredictionOracle],
        timeout_seconds: float = 60.0,
        validity_hours: float = FORECAST_VALIDITY_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.oracle = oracle
        self.timeout_seconds = timeout_seconds
        self.validity_hours = validity_hours
        self.clock = clock

    @property
    def configured(self) -> bool:
        return self.oracle is not None

    async def _ask(self, call) -> Dict[str, Any]:
        if self.oracle is None:
            raise PredictionUnavailable("Prediction oracle is not configured")
        try:
            result = await asyncio.wait_for(call(), timeout=self.timeout_seconds)
        except PredictionUnavailable:
            raise
        except asyncio.TimeoutError as e:
            raise PredictionUnavailable(
                f"Oracle did not answer within {self.timeout_seconds}s"
            ) from e
        except Exception as e:
            raise PredictionUnavailable(f"Oracle call failed: {e}") from e
        if not isinstance(result, dict):
            raise PredictionUnavailable("Oracle response was not a JSON object")
        return result

    async def generate_forecast(
        self, entity: TrackedEntity, context: PredictionContext
    ) -> ForecastRecord:
        """
        Ask the oracle for a forecast and store the validated record.

        Raises:
            PredictionUnavailable: oracle missing, timed out or unusable
        """
        data = await self._ask(lambda: self.oracle.forecast(context))
        path, intensity, landfall, analysis, confidence = parse_forecast_response(data)

        created_at = self.clock()
        record = ForecastRecord(
            entity_id=entity.id,
            path_prediction=path,
            intensity_forecast=intensity,
            landfall=landfall,
            analysis=analysis,
            confidence=confidence,
            created_at=created_at,
            valid_until=created_at + timedelta(hours=self.validity_hours),
            model=getattr(self.oracle, "model", "") or "",
        )
        stored = self.store.append_forecast(record)
        logger.info(
            f"Forecast {stored.id} for {entity.id}: {len(path.coordinates)} track point(s), "
            f"confidence {confidence:.2f}, landfall {landfall.probability:.2f}"
        )
        return stored

    async def analyze_intensification_trend(self, entity: TrackedEntity) -> IntensificationTrend:
        """Classify intensification; falls back to steady/0.5 when the oracle fails."""
        try:
            data = await self._ask(lambda: self.oracle.intensification(entity))
        except PredictionUnavailable as e:
            logger.warning(f"Intensification analysis for {entity.id} unavailable: {e}")
            return IntensificationTrend(
                trend=Trend.STEADY,
                rationale=TREND_FAILURE_RATIONALE,
                confidence=TREND_FAILURE_CONFIDENCE,
            )
        return parse_trend_response(data)
