# fleetauth/security/pipeline.py
"""
Request authentication pipeline.

Every HTTP request runs through an explicit, ordered list of stages before
any route handler sees it:

    SessionStage  -> resolves the session cookie into session + identity
    CsrfStage     -> checks the CSRF header on state-changing requests

Each stage receives an immutable RequestContext and returns either
Continue(new_context) or Reject(error). The first rejection wins and is
rendered by the middleware; the handler never runs.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Union

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from fleetauth.core.exceptions import CsrfMismatchError, FleetAuthError, UpstreamUnavailableError
from fleetauth.models.identity import Identity
from fleetauth.security.csrf import CsrfGuard
from fleetauth.security.gate import AuthGate
from fleetauth.sessions.models import SessionRecord

logger = logging.getLogger(__name__)

CSRF_HEADER_ALIASES = ("X-XSRF-TOKEN", "X-CSRF-Token")
RETRY_AFTER_SECONDS = 1

# Probes must answer even while the session store is down
PUBLIC_PATHS = frozenset({"/health", "/ready"})


@dataclass(frozen=True)
class RequestContext:
    """Authentication state of one request. Built once, never mutated."""
    method: str
    path: str
    session: Optional[SessionRecord] = None
    identity: Optional[Identity] = None
    csrf_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None


@dataclass(frozen=True)
class Continue:
    context: RequestContext


@dataclass(frozen=True)
class Reject:
    error: FleetAuthError


StageResult = Union[Continue, Reject]


class SessionStage:
    """Attach the session and identity named by the session cookie, if any."""

    def __init__(self, gate: AuthGate, cookie_name: str):
        self.gate = gate
        self.cookie_name = cookie_name

    async def process(self, context: RequestContext, request: Request) -> StageResult:
        # UpstreamUnavailableError propagates: an outage is not "anonymous"
        result = await self.gate.authenticate(request.cookies.get(self.cookie_name))
        if result is None:
            return Continue(context)
        return Continue(replace(context, session=result.session, identity=result.identity))


class CsrfStage:
    """Reject state-changing requests on a session that lack a matching token."""

    def __init__(self, guard: CsrfGuard):
        self.guard = guard

    async def process(self, context: RequestContext, request: Request) -> StageResult:
        if context.session is None or not self.guard.requires_check(context.method):
            return Continue(context)

        if not self.guard.verify(context.session, context.csrf_token):
            logger.warning(f"🛡️ CSRF check failed: {context.method} {context.path}")
            return Reject(CsrfMismatchError())
        return Continue(context)


class AuthPipeline:
    """Runs the stages in order; the first Reject stops the run."""

    def __init__(self, stages: List[Union[SessionStage, CsrfStage]], csrf_header: str = "X-XSRF-TOKEN"):
        self.stages = stages
        self.csrf_headers = (csrf_header,) + tuple(h for h in CSRF_HEADER_ALIASES if h.lower() != csrf_header.lower())

    def initial_context(self, request: Request) -> RequestContext:
        token = None
        for header in self.csrf_headers:
            token = request.headers.get(header)
            if token:
                break
        return RequestContext(method=request.method.upper(), path=request.url.path, csrf_token=token)

    async def run(self, request: Request) -> StageResult:
        outcome: StageResult = Continue(self.initial_context(request))
        for stage in self.stages:
            outcome = await stage.process(outcome.context, request)
            if isinstance(outcome, Reject):
                return outcome
        return outcome


def error_response(exc: FleetAuthError) -> JSONResponse:
    """Render a fabric error as the public error envelope."""
    if exc.status_code >= 500:
        message = exc.public_message
    else:
        message = exc.message

    response = JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": message}}
    )
    if exc.retryable:
        response.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return response


def set_session_cookie(response: Response, settings, cookie_value: str) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        cookie_value,
        max_age=settings.SESSION_TTL_SECONDS,
        httponly=True,
        secure=settings.SECURE_COOKIES,
        samesite="lax",
    )


def set_csrf_cookie(response: Response, settings, token: str) -> None:
    # Readable by the client script, which echoes it in the CSRF header
    response.set_cookie(
        settings.CSRF_COOKIE_NAME,
        token,
        httponly=False,
        secure=settings.SECURE_COOKIES,
        samesite="lax",
    )


def clear_session_cookies(response: Response, settings) -> None:
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    response.delete_cookie(settings.CSRF_COOKIE_NAME)


def _sets_cookie(response: Response, name: str) -> bool:
    prefix = f"{name}="
    return any(value.startswith(prefix) for value in response.headers.getlist("set-cookie"))


class AuthMiddleware:
    """
    HTTP middleware running the AuthPipeline.

    Stores the resulting RequestContext on request.state.context, renders
    rejections itself and refreshes the CSRF cookie on every response of an
    authenticated request.
    """

    async def __call__(self, request: Request, call_next) -> Response:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        fabric = getattr(request.app.state, "fabric", None)
        if fabric is None:
            return error_response(UpstreamUnavailableError("Services are not initialized yet"))

        try:
            outcome = await fabric.pipeline.run(request)
        except FleetAuthError as e:
            logger.error(f"❌ Authentication unavailable for {request.method} {request.url.path}: {e}")
            return error_response(e)

        if isinstance(outcome, Reject):
            return error_response(outcome.error)

        context = outcome.context
        request.state.context = context
        response = await call_next(request)

        settings = fabric.settings
        if context.session is not None and not _sets_cookie(response, settings.CSRF_COOKIE_NAME):
            set_csrf_cookie(response, settings, fabric.csrf.issue_token(context.session))
        return response
