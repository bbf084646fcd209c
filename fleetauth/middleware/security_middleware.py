"""
Security middleware for the fleetauth API
Adds security headers and logs requests
"""

from fastapi import Request, Response
import time
import logging
from typing import Callable

from fleetauth.core.rate_limit_config import get_real_ip

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 1.0


class SecurityHeadersMiddleware:
    """Adds security headers and the processing time to every response"""

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        if process_time > SLOW_REQUEST_SECONDS:
            logger.warning(f"⏱️ Slow request: {request.url.path} took {process_time:.2f}s")

        return response


class RequestLogger:
    """Logs every request except the probes"""

    def __init__(self, quiet_paths=("/health", "/ready")):
        self.quiet_paths = set(quiet_paths)

    async def __call__(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path not in self.quiet_paths:
            logger.info(f"📥 Request: {request.method} {path} from {get_real_ip(request)}")

        response = await call_next(request)

        if response.status_code >= 500:
            logger.warning(f"📤 {request.method} {path} -> {response.status_code}")
        return response
