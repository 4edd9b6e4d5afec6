"""
FastAPI backend for STORMWATCH.

Provides REST endpoints for:
- Tracked storms (NHC)
- Feed snapshots (NHC geometry, GFS weather, CMEMS ocean fields)
- Oracle forecasts and intensification analysis
- System status and manual refresh
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from api.middleware import get_request_id, setup_middleware
from api.rate_limit import limiter
from api.routers import feeds, forecasts, storms, system
from stormwatch import __version__
from stormwatch.config import Settings, get_settings
from stormwatch.exceptions import FetchError, NotFound, PredictionUnavailable
from stormwatch.service import StormService

logger = logging.getLogger(__name__)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    service: Optional[StormService] = None,
) -> FastAPI:
    """
    Application factory for the STORMWATCH API.

    Args:
        settings: Settings to use; defaults to the cached environment settings
        service: Pre-built service (tests inject fakes here). When omitted the
            lifespan builds one from settings and owns its scheduler.

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    settings.configure_logging()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        owned = service is None
        application.state.service = service or StormService.from_settings(settings)
        scheduler = application.state.service.scheduler
        if settings.scheduler_enabled and scheduler is not None:
            await scheduler.start()
        logger.info(f"STORMWATCH API started ({settings.environment})")
        try:
            yield
        finally:
            if owned:
                await application.state.service.aclose()
            elif scheduler is not None:
                await scheduler.stop()
            logger.info("STORMWATCH API stopped")

    application = FastAPI(
        title="STORMWATCH API",
        description="Tropical cyclone tracking, environmental feeds and oracle forecasts.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    if service is not None:
        application.state.service = service

    setup_middleware(application)

    # CORS - configured origins only
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    application.state.limiter = limiter

    @application.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded",
                "detail": str(exc.detail),
                "retry_after": getattr(exc, 'retry_after', 60),
            },
            headers={"Retry-After": str(getattr(exc, 'retry_after', 60))},
        )

    @application.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @application.exception_handler(PredictionUnavailable)
    async def prediction_unavailable_handler(request: Request, exc: PredictionUnavailable):
        logger.warning(f"Prediction unavailable (request {get_request_id()}): {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Prediction unavailable", "reason": str(exc)},
        )

    @application.exception_handler(FetchError)
    async def fetch_error_handler(request: Request, exc: FetchError):
        logger.warning(f"Upstream fetch failed (request {get_request_id()}): {exc}")
        return JSONResponse(
            status_code=502,
            content={"detail": "Upstream feed unavailable", "source": exc.source, "reason": str(exc)},
        )

    application.include_router(storms.router)
    application.include_router(feeds.router)
    application.include_router(forecasts.router)
    application.include_router(system.router)

    return application


def run():
    """Run the API with uvicorn using configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
