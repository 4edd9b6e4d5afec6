"""
STORMWATCH API Pydantic schemas.

Re-exports all schema classes:
    from api.schemas import StormResponse, ForecastResponse, ...
"""

# Storms
from .storms import StormResponse  # noqa: F401

# Feeds
from .feeds import SnapshotResponse  # noqa: F401

# Forecasts
from .forecasts import (  # noqa: F401
    PathPredictionModel,
    IntensityForecastModel,
    LandfallModel,
    ForecastResponse,
    IntensificationResponse,
)

# System
from .system import (  # noqa: F401
    FamilyStatusModel,
    StatusResponse,
    RefreshResponse,
    LivenessResponse,
)
