# fleetauth/api/auth.py

from fastapi import APIRouter, Depends, Request, WebSocket
from fastapi.responses import JSONResponse

from fleetauth.api.dependencies import get_fabric, require_identity
from fleetauth.core.fabric import FabricServices
from fleetauth.core.rate_limit_config import RATE_LIMITS, limiter
from fleetauth.realtime.bridge import TRY_AGAIN_LATER_CODE
from fleetauth.security.pipeline import RequestContext, clear_session_cookies

router = APIRouter(tags=["auth"])


@router.post("/api/v1/auth/logout")
@limiter.limit(RATE_LIMITS["logout"])
async def logout(
    request: Request,
    context: RequestContext = Depends(require_identity),
    fabric: FabricServices = Depends(get_fabric)
):
    await fabric.gate.logout(context.session)

    response = JSONResponse(content={"data": {"loggedOut": True}})
    clear_session_cookies(response, fabric.settings)
    return response


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    fabric = getattr(websocket.app.state, "fabric", None)
    if fabric is None:
        await websocket.close(code=TRY_AGAIN_LATER_CODE)
        return
    await fabric.bridge.handle(websocket)
