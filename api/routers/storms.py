"""
Storms API router.

Handles listing tracked storms and fetching one storm by id.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from api.schemas import StormResponse
from api.state import get_service
from stormwatch.service import StormService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Hurricanes"])


@router.get("/api/hurricanes", response_model=List[StormResponse])
async def list_hurricanes(service: StormService = Depends(get_service)):
    """Active storms, ordered by id."""
    return [StormResponse.from_entity(e) for e in service.list_active_entities()]


@router.get("/api/hurricanes/{hurricane_id}", response_model=StormResponse)
async def get_hurricane(hurricane_id: str, service: StormService = Depends(get_service)):
    """One storm by id (active or not)."""
    return StormResponse.from_entity(service.get_entity(hurricane_id))
