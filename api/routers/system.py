"""
System API router.

Handles status, manual refresh and the liveness probe.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from api.rate_limit import get_refresh_rate_limit, limiter
from api.schemas import LivenessResponse, RefreshResponse, StatusResponse
from api.state import get_service
from stormwatch.service import StormService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get("/api/status", response_model=StatusResponse)
async def get_status(service: StormService = Depends(get_service)):
    """
    Per-feed health and composite status.

    ``live`` requires at least one active storm and a configured oracle.
    Reading status never triggers a fetch.
    """
    return StatusResponse.from_view(service.get_status())


@router.post("/api/refresh", response_model=RefreshResponse)
@limiter.limit(get_refresh_rate_limit())
async def refresh(request: Request, service: StormService = Depends(get_service)):
    """Run a full refresh cycle now and report what happened."""
    report = await service.trigger_manual_refresh()
    return RefreshResponse.from_report(report)


@router.get("/api/health/live", response_model=LivenessResponse)
async def liveness():
    """Kubernetes liveness probe."""
    return LivenessResponse(status="alive", timestamp=datetime.now(timezone.utc))
