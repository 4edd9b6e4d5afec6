"""Tracked storm schemas."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from stormwatch.models import TrackedEntity


class StormResponse(BaseModel):
    """A tracked storm and its latest observed state."""
    id: str
    name: str
    category: str
    wind_speed: float  # mph
    pressure: float  # mb
    latitude: float
    longitude: float
    movement: str
    last_update: datetime
    next_update: Optional[datetime] = None
    forecast_track: Optional[Dict[str, Any]] = None
    is_active: bool
    provenance: str

    @classmethod
    def from_entity(cls, entity: TrackedEntity) -> "StormResponse":
        return cls(
            id=entity.id,
            name=entity.name,
            category=entity.category,
            wind_speed=entity.wind_speed,
            pressure=entity.pressure,
            latitude=entity.latitude,
            longitude=entity.longitude,
            movement=entity.movement,
            last_update=entity.last_observed_at,
            next_update=entity.next_expected_at,
            forecast_track=entity.forecast_track,
            is_active=entity.active,
            provenance=entity.provenance,
        )
