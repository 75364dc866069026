"""
Embedded (iframe) identity router: handshake exchange and logout.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.user import AUTH_TYPE_EMBEDDED, User
from routers.auth import project_user
from routers.auth_scope import auth_scheme, bearer_value
from routers.rate_limit import rate_limit
from services.crm import CrmError, validate_location
from services.embed_session import create_embed_session, revoke_embed_session, verify_handshake_value
from services.identity import SHAPE_OPAQUE, token_shape
from services.passwords import unusable_password_hash

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_handshake(request: Request) -> None:
    if settings.DEV_MODE:
        return
    cookie = request.cookies.get(settings.EMBED_COOKIE_NAME)
    if not cookie:
        raise HTTPException(
            status_code=403,
            detail="Access denied. This app must be opened from within the CRM.",
        )
    if not verify_handshake_value(cookie):
        raise HTTPException(
            status_code=403,
            detail="Access denied. Verification expired. Please reload from the CRM.",
        )


async def _get_or_create_embedded_user(location_id: str, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.location_id == location_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        username=f"crm_{location_id}",
        email=f"location_{location_id}@embedded.placeholder",
        password_hash=unusable_password_hash(),
        location_id=location_id,
        auth_type=AUTH_TYPE_EMBEDDED,
        credits_balance=0,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent first load of the same location.
        await db.rollback()
        result = await db.execute(select(User).where(User.location_id == location_id))
        return result.scalar_one()
    await db.refresh(user)
    logger.info("embedded_user_created user=%s location=%s", user.id, location_id)
    return user


@router.get("/init")
async def init_embedded_session(
    request: Request,
    location_id: Optional[str] = Query(default=None),
    _rate_limit: None = Depends(rate_limit("embed_init", limit=60, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    """Exchange a verified handshake + location id for an opaque session token."""
    if not location_id:
        raise HTTPException(status_code=400, detail="location_id is required")
    _require_handshake(request)

    try:
        await validate_location(location_id)
    except CrmError as exc:
        raise HTTPException(status_code=403, detail=exc.message) from exc

    user = await _get_or_create_embedded_user(location_id, db)
    projection = project_user(user)
    session_token = await create_embed_session(location_id, db)

    response = JSONResponse({"session_token": session_token, "user": projection.model_dump()})
    # One-time use.
    response.delete_cookie(settings.EMBED_COOKIE_NAME, path="/", secure=True, httponly=True, samesite="none")
    return response


@router.post("/logout")
async def logout_embedded_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
):
    token = bearer_value(credentials)
    if token_shape(token) != SHAPE_OPAQUE:
        raise HTTPException(status_code=400, detail="Not an embedded session token")
    revoked = await revoke_embed_session(token, db)
    return {"success": True, "revoked": revoked}
