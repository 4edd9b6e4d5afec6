"""Forecast and intensification schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from stormwatch.models import ForecastRecord, IntensificationTrend


class PathPredictionModel(BaseModel):
    coordinates: List[List[float]]  # [lon, lat]
    time_points: List[str]
    confidence_level: float = Field(..., ge=0, le=1)


class IntensityForecastModel(BaseModel):
    wind_speeds: List[float]
    pressures: List[float]
    categories: List[str]
    time_points: List[str]


class LandfallModel(BaseModel):
    probability: float = Field(..., ge=0, le=1)
    location: Optional[str] = None
    time: Optional[str] = None


class ForecastResponse(BaseModel):
    """A stored forecast for one storm."""
    id: str
    hurricane_id: str
    path_prediction: PathPredictionModel
    intensity_forecast: IntensityForecastModel
    landfall: LandfallModel
    analysis: str
    confidence: float = Field(..., ge=0, le=1)
    model: str
    created_at: datetime
    valid_until: datetime

    @classmethod
    def from_record(cls, record: ForecastRecord) -> "ForecastResponse":
        path = record.path_prediction
        intensity = record.intensity_forecast
        return cls(
            id=record.id,
            hurricane_id=record.entity_id,
            path_prediction=PathPredictionModel(
                coordinates=[list(c) for c in path.coordinates],
                time_points=list(path.time_points),
                confidence_level=path.confidence_level,
            ),
            intensity_forecast=IntensityForecastModel(
                wind_speeds=list(intensity.wind_speeds),
                pressures=list(intensity.pressures),
                categories=list(intensity.categories),
                time_points=list(intensity.time_points),
            ),
            landfall=LandfallModel(
                probability=record.landfall.probability,
                location=record.landfall.location,
                time=record.landfall.time,
            ),
            analysis=record.analysis,
            confidence=record.confidence,
            model=record.model,
            created_at=record.created_at,
            valid_until=record.valid_until,
        )


class IntensificationResponse(BaseModel):
    hurricane_id: str
    potential: str  # rapid | gradual | steady | weakening
    reasoning: str
    confidence: float = Field(..., ge=0, le=1)

    @classmethod
    def from_trend(cls, entity_id: str, trend: IntensificationTrend) -> "IntensificationResponse":
        return cls(
            hurricane_id=entity_id,
            potential=trend.trend.value,
            reasoning=trend.rationale,
            confidence=trend.confidence,
        )
