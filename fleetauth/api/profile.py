# fleetauth/api/profile.py
"""
Profile routes. Every route here requires an authenticated identity; the mutating ones
have already passed the CSRF stage when the handler runs.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from fleetauth.api.dependencies import get_fabric, require_identity
from fleetauth.core.exceptions import FleetAuthError, UnauthenticatedError, ValidationFailedError
from fleetauth.core.fabric import FabricServices
from fleetauth.core.rate_limit_config import RATE_LIMITS, limiter
from fleetauth.models.identity import Identity
from fleetauth.security.pipeline import RequestContext, clear_session_cookies

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/profile", tags=["profile"])


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName", max_length=100)
    last_name: Optional[str] = Field(None, alias="lastName", max_length=100)


class CardRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=255)


def _profile_response(identity: Optional[Identity]) -> dict:
    if identity is None:
        # Deleted by a concurrent request after authentication
        raise UnauthenticatedError()
    return {"data": identity.public_view()}


async def _discard_blob(fabric: FabricServices, url: str) -> None:
    """Best-effort delete of a picture nothing references any more"""
    try:
        await fabric.blobs.delete(url)
    except FleetAuthError as e:
        logger.warning(f"⚠️ Could not delete unreferenced picture {url}: {e}")


@router.get("")
async def get_profile(context: RequestContext = Depends(require_identity)):
    """Current profile; also how a client picks up its first CSRF cookie"""
    return _profile_response(context.identity)


@router.put("")
@limiter.limit(RATE_LIMITS["profile_update"])
async def update_profile(
    request: Request,
    body: ProfileUpdate,
    context: RequestContext = Depends(require_identity),
    fabric: FabricServices = Depends(get_fabric)
):
    values = body.model_dump(exclude_unset=True)
    if not values:
        raise ValidationFailedError("Nothing to update", field="firstName")

    identity = await fabric.identities.update(context.identity.id, values)
    logger.info(f"✏️ Updated profile of identity {context.identity.id}")
    return _profile_response(identity)


@router.delete("")
@limiter.limit(RATE_LIMITS["account_delete"])
async def delete_account(
    request: Request,
    context: RequestContext = Depends(require_identity),
    fabric: FabricServices = Depends(get_fabric)
):
    # A client disconnect must not stop the cleanup half-way
    report = await asyncio.shield(fabric.deletion.delete_account(context.identity.id))

    response = JSONResponse(content={
        "data": {"deleted": True, "partialFailures": len(report.failures)}
    })
    clear_session_cookies(response, fabric.settings)
    return response


@router.put("/picture")
@limiter.limit(RATE_LIMITS["picture_upload"])
async def update_picture(
    request: Request,
    picture: UploadFile = File(...),
    context: RequestContext = Depends(require_identity),
    fabric: FabricServices = Depends(get_fabric)
):
    content_type = picture.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationFailedError("Only image uploads are allowed", field="picture")

    max_bytes = fabric.settings.MAX_PICTURE_BYTES
    data = await picture.read(max_bytes + 1)
    if not data:
        raise ValidationFailedError("The uploaded picture is empty", field="picture")
    if len(data) > max_bytes:
        raise ValidationFailedError(f"Pictures are limited to {max_bytes} bytes", field="picture")

    old_picture = context.identity.picture
    url = await fabric.blobs.upload(data, content_type)
    identity = await fabric.identities.update(context.identity.id, {"picture": url})

    if identity is None:
        # Identity deleted meanwhile; nothing references the new upload
        await _discard_blob(fabric, url)
    elif old_picture and old_picture != url:
        await _discard_blob(fabric, old_picture)

    return _profile_response(identity)


@router.put("/card")
@limiter.limit(RATE_LIMITS["card_attach"])
async def attach_card(
    request: Request,
    body: CardRequest,
    context: RequestContext = Depends(require_identity),
    fabric: FabricServices = Depends(get_fabric)
):
    identity = context.identity
    customer_id = identity.stripe_customer_id
    if not customer_id:
        customer_id = await fabric.payments.create_customer(identity.email)
        await fabric.identities.update(identity.id, {"stripe_customer_id": customer_id})

    card_id = await fabric.payments.create_card(body.token, customer_id)
    updated = await fabric.identities.update(identity.id, {"stripe_card_id": card_id})
    logger.info(f"💳 Attached card to identity {identity.id}")
    return _profile_response(updated)
