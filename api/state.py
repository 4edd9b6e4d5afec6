"""
Access to the StormService owned by the running application.

The service is built in the app lifespan (or injected by tests) and kept on
``app.state``; routers receive it through the ``get_service`` dependency.
"""
import logging

from fastapi import HTTPException, Request

from stormwatch.service import StormService

logger = logging.getLogger(__name__)


def get_service(request: Request) -> StormService:
    """FastAPI dependency returning the application's StormService."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        logger.error("Request received before the service was initialized")
        raise HTTPException(status_code=503, detail="Service is starting up")
    return service
