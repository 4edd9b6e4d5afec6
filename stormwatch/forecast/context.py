"""
Prediction context builder.

Joins a storm with the environmental conditions around it. Values come from
the ``summary`` dict that adapters may attach to snapshot metadata; anything
missing falls back to Atlantic hurricane-season climatology and is listed in
``PredictionContext.defaulted_fields``.

The GFS and CMEMS adapters store references to the gridded data (URLs,
dataset and variable names), not sampled values, so they never attach a
summary. Contexts built from production snapshots are therefore climatology
for every environmental field; only a snapshot carrying a ``summary`` changes
that.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from stormwatch.models import EnvironmentalSnapshot, PredictionContext, TrackedEntity

logger = logging.getLogger(__name__)

# Typical Atlantic hurricane-season values
DEFAULT_SEA_SURFACE_TEMPERATURE = 28.5  # degC, favorable for development
DEFAULT_AMBIENT_PRESSURE = 1013.2  # hPa, standard pressure
DEFAULT_WIND_SHEAR = 10.0  # knots, moderate shear
DEFAULT_OCEAN_CURRENTS = "Gulf Stream influence, warm water transport northward"

# context field -> summary keys accepted for it, in order of preference
SUMMARY_KEYS = {
    "sea_surface_temperature": ("sea_surface_temperature", "sst"),
    "ambient_pressure": ("ambient_pressure", "pressure", "mslp"),
    "wind_shear": ("wind_shear", "shear"),
    "ocean_currents": ("ocean_currents", "currents"),
}

DEFAULTS = {
    "sea_surface_temperature": DEFAULT_SEA_SURFACE_TEMPERATURE,
    "ambient_pressure": DEFAULT_AMBIENT_PRESSURE,
    "wind_shear": DEFAULT_WIND_SHEAR,
    "ocean_currents": DEFAULT_OCEAN_CURRENTS,
}


class ForecastContextBuilder:
    """Pure function object: same inputs, same context."""

    def build(
        self,
        entity: TrackedEntity,
        snapshots: Iterable[Optional[EnvironmentalSnapshot]] = (),
    ) -> PredictionContext:
        ordered = sorted(
            (s for s in snapshots if s is not None),
            key=lambda s: (s.timestamp, s.sequence),
            reverse=True,
        )
        values: Dict[str, Any] = {}
        defaulted = []
        for name in SUMMARY_KEYS:
            value = self._from_summaries(name, ordered)
            if value is None:
                value = DEFAULTS[name]
                defaulted.append(name)
            values[name] = value

        if defaulted:
            logger.debug(f"Context for {entity.id}: defaulted {', '.join(defaulted)}")

        return PredictionContext(
            entity_id=entity.id,
            name=entity.name,
            category=entity.category,
            wind_speed=entity.wind_speed,
            pressure=entity.pressure,
            latitude=entity.latitude,
            longitude=entity.longitude,
            movement=entity.movement,
            observed_at=entity.last_observed_at,
            defaulted_fields=tuple(defaulted),
            **values,
        )

    @staticmethod
    def _from_summaries(name: str, snapshots) -> Any:
        numeric = name != "ocean_currents"
        for snapshot in snapshots:
            summary = snapshot.metadata.get("summary")
            if not isinstance(summary, dict):
                continue
            for key in SUMMARY_KEYS[name]:
                value = summary.get(key)
                if value is None:
                    continue
                if not numeric:
                    if isinstance(value, str) and value.strip():
                        return value.strip()
                    continue
                try:
                    return float(value)
                except (TypeError, ValueError):
                    continue
        return None
