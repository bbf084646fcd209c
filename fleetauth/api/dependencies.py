# fleetauth/api/dependencies.py
"""FastAPI dependencies shared by the routers."""

from fastapi import Depends, Request

from fleetauth.core.exceptions import UnauthenticatedError, UpstreamUnavailableError
from fleetauth.core.fabric import FabricServices
from fleetauth.security.pipeline import RequestContext


def get_fabric(request: Request) -> FabricServices:
    fabric = getattr(request.app.state, "fabric", None)
    if fabric is None:
        raise UpstreamUnavailableError("Services are not initialized yet")
    return fabric


def get_request_context(request: Request) -> RequestContext:
    """The context the auth pipeline attached; anonymous if it never ran."""
    context = getattr(request.state, "context", None)
    if context is None:
        return RequestContext(method=request.method.upper(), path=request.url.path)
    return context


def require_identity(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Reject anonymous requests before the handler body runs."""
    if not context.is_authenticated:
        raise UnauthenticatedError()
    return context
