"""
Rate limiting for the STORMWATCH API using SlowAPI.

Counters live in Redis when REDIS_ENABLED is set and reachable, otherwise
in process memory.
"""
import logging

import redis
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from stormwatch.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize Redis client
redis_client = None
if settings.redis_enabled:
    try:
        redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        redis_client.ping()
        logger.info("Redis connection established for rate limiting")
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        logger.warning("Falling back to in-memory rate limit storage")
        redis_client = None


def get_client_identifier(request: Request) -> str:
    """Rate-limit key: the client address."""
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_identifier,
    enabled=settings.rate_limit_enabled,
    storage_uri=settings.redis_url if redis_client is not None else "memory://",
    strategy="fixed-window",
)


def get_forecast_rate_limit() -> str:
    """Limit for forecast generation (oracle calls cost money)."""
    return f"{settings.rate_limit_forecasts_per_minute}/minute"


def get_refresh_rate_limit() -> str:
    """Limit for manual refreshes (each one fans out to every upstream)."""
    return f"{settings.rate_limit_refresh_per_minute}/minute"
