# fleetauth/main.py
"""
fleetauth FastAPI application.

Every fleet member runs this app. Members share nothing in process memory:
session state and the fanout bus live in Redis, account data in the
relational store.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from fleetauth.api import auth, profile
from fleetauth.core.config import Settings, get_settings, validate_required_settings
from fleetauth.core.exceptions import FleetAuthError
from fleetauth.core.fabric import FabricServices, build_fabric
from fleetauth.core.logging_config import setup_logging
from fleetauth.core.rate_limit_config import limiter, rate_limit_exceeded_handler
from fleetauth.middleware.security_middleware import RequestLogger, SecurityHeadersMiddleware
from fleetauth.security.pipeline import AuthMiddleware, error_response

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[FabricServices] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use (default: environment)
        services: Pre-built services; when given they are used as-is and
                  available before the lifespan runs (tests)
    """
    setup_logging()
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"🚀 {settings.APP_NAME} starting as fleet member {settings.FLEET_MEMBER_ID}")
        logger.info("=" * 60)

        fabric = getattr(app.state, "fabric", None)
        if fabric is None:
            validate_required_settings(settings)
            fabric = build_fabric(settings)

        started_here = not fabric.started
        try:
            if started_here:
                await fabric.start()
        except Exception as e:
            logger.error(f"❌ Startup failed: {e}")
            raise
        app.state.fabric = fabric

        logger.info("🟢 Server is ready to accept connections")
        yield

        logger.info(f"🛑 {settings.APP_NAME} shutting down...")
        if started_here:
            await fabric.stop()
        logger.info("👋 Goodbye!")

    app = FastAPI(
        title="fleetauth",
        description="Shared session, CSRF and realtime auth fabric",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url=None
    )
    if services is not None:
        app.state.fabric = services

    # =========================================================================
    # RATE LIMITING
    # =========================================================================

    limiter.enabled = settings.RATE_LIMIT_ENABLED
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # =========================================================================
    # ERROR HANDLING
    # =========================================================================

    @app.exception_handler(FleetAuthError)
    async def fleetauth_error_handler(request: Request, exc: FleetAuthError):
        if exc.status_code >= 500:
            logger.error(f"❌ {request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        return JSONResponse(
            status_code=422,
            content={"error": {
                "code": "validation_failed",
                "message": "The request input is invalid.",
                "fields": [f for f in fields if f],
            }}
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"❌ Unhandled error in {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "internal_error", "message": "An internal error occurred."}}
        )

    # =========================================================================
    # MIDDLEWARE (last registered runs first)
    # =========================================================================

    app.middleware("http")(AuthMiddleware())
    app.middleware("http")(SecurityHeadersMiddleware())
    app.middleware("http")(RequestLogger())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", settings.CSRF_HEADER_NAME, "X-CSRF-Token"],
    )

    # =========================================================================
    # ROUTES
    # =========================================================================

    @app.get("/health", status_code=200)
    async def health():
        """Liveness: the process is up"""
        return {
            "status": "healthy",
            "fleet_member": settings.FLEET_MEMBER_ID,
            "timestamp": datetime.now().isoformat()
        }

    @app.get("/ready")
    async def ready():
        """Readiness: the shared backends answer"""
        fabric = getattr(app.state, "fabric", None)
        if fabric is None:
            return JSONResponse(status_code=503, content={"ready": False})

        readiness = await fabric.readiness()
        return JSONResponse(status_code=200 if readiness["ready"] else 503, content=readiness)

    app.include_router(profile.router)
    app.include_router(auth.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("fleetauth.main:app", host="0.0.0.0", port=8000)
