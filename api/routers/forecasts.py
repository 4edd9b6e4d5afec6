"""
Forecast API router.

Handles listing stored forecasts, generating a new forecast for a storm
(rate limited: every call reaches the oracle) and intensification analysis.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from api.rate_limit import get_forecast_rate_limit, limiter
from api.schemas import ForecastResponse, IntensificationResponse
from api.state import get_service
from stormwatch.service import StormService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Predictions"])


@router.get("/api/predictions", response_model=List[ForecastResponse])
async def list_predictions(
    hurricane_id: Optional[str] = Query(None, description="Only forecasts for this storm"),
    service: StormService = Depends(get_service),
):
    """Stored forecasts, newest first."""
    return [ForecastResponse.from_record(r) for r in service.list_forecasts(hurricane_id)]


@router.get("/api/hurricanes/{hurricane_id}/prediction", response_model=ForecastResponse)
async def get_latest_prediction(hurricane_id: str, service: StormService = Depends(get_service)):
    """Most recent forecast for a storm."""
    return ForecastResponse.from_record(service.get_latest_forecast(hurricane_id))


@router.post("/api/hurricanes/{hurricane_id}/prediction", response_model=ForecastResponse)
@limiter.limit(get_forecast_rate_limit())
async def generate_prediction(
    request: Request,
    hurricane_id: str,
    service: StormService = Depends(get_service),
):
    """Ask the oracle for a fresh forecast and store it."""
    record = await service.generate_forecast(hurricane_id)
    return ForecastResponse.from_record(record)


@router.get(
    "/api/hurricanes/{hurricane_id}/intensification",
    response_model=IntensificationResponse,
)
async def get_intensification(hurricane_id: str, service: StormService = Depends(get_service)):
    """Intensification trend; reports steady at 0.5 confidence when the oracle is down."""
    trend = await service.analyze_intensification(hurricane_id)
    return IntensificationResponse.from_trend(hurricane_id, trend)
