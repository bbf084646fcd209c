"""
Rate limiting configuration for the fleetauth API
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
import logging

logger = logging.getLogger(__name__)


def get_real_ip(request: Request) -> str:
    """
    Get the real IP address, considering proxy headers.
    Fleet members run behind a load balancer, so the socket peer is the balancer.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


# Per-route limits, keyed by client IP
RATE_LIMITS = {
    "profile_update": "30/minute",
    "picture_upload": "10/minute",
    "card_attach": "5/minute",
    "account_delete": "3/minute",
    "logout": "30/minute",
}

RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment and try again."


# Route decorators bind at import time; create_app toggles `enabled`.
# Counters are per fleet member.
limiter = Limiter(key_func=get_real_ip)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Rate limit response in the common error envelope"""
    logger.warning(f"🚦 Rate limit hit by {get_real_ip(request)} on {request.url.path}")
    response = JSONResponse(
        status_code=429,
        content={"error": {"code": "rate_limited", "message": RATE_LIMIT_MESSAGE}}
    )
    response.headers["Retry-After"] = "60"
    response.headers["X-RateLimit-Limit"] = str(getattr(exc, "limit", "N/A"))
    return response
