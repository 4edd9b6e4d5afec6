"""
Feed snapshot API router.

    GET /api/nhc/{kind}      -> track geometry (cones, tracks, warnings)
    GET /api/weather/{kind}  -> GFS fields (temperature, pressure, wind)
    GET /api/ocean/{kind}    -> CMEMS fields (currents, waves)

Each returns the latest stored snapshot, fetching one first when nothing
has been stored yet.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.schemas import SnapshotResponse
from api.state import get_service
from stormwatch.models import FeedFamily
from stormwatch.service import StormService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Feeds"])


async def _latest(service: StormService, family: FeedFamily, kind: str) -> SnapshotResponse:
    try:
        snapshot = await service.get_or_fetch(family, kind)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SnapshotResponse.from_snapshot(snapshot)


@router.get("/api/nhc/{kind}", response_model=SnapshotResponse)
async def get_nhc_data(kind: str, service: StormService = Depends(get_service)):
    return await _latest(service, FeedFamily.TRACK_GEOMETRY, kind)


@router.get("/api/weather/{kind}", response_model=SnapshotResponse)
async def get_weather_data(kind: str, service: StormService = Depends(get_service)):
    return await _latest(service, FeedFamily.GRIDDED_WEATHER, kind)


@router.get("/api/ocean/{kind}", response_model=SnapshotResponse)
async def get_ocean_data(kind: str, service: StormService = Depends(get_service)):
    return await _latest(service, FeedFamily.OCEAN_FIELD, kind)
