"""Resolve a bearer credential to a User, choosing the verifier by token shape."""

from __future__ import annotations

import re
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from services.embed_session import validate_embed_session
from services.session_token import decode_session_token


SHAPE_SIGNED = "signed"
SHAPE_OPAQUE = "opaque"

_SIGNED_RE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")
_OPAQUE_RE = re.compile(r"^[0-9a-f]{64}$")


def token_shape(value: Optional[str]) -> Optional[str]:
    """'signed' for three dot-separated segments, 'opaque' for 64 hex chars."""
    token = (value or "").strip()
    if _SIGNED_RE.match(token):
        return SHAPE_SIGNED
    if _OPAQUE_RE.match(token):
        return SHAPE_OPAQUE
    return None


async def resolve_bearer(value: Optional[str], db: AsyncSession) -> Optional[User]:
    """Return the user behind a bearer value; exactly one verifier is consulted."""
    token = (value or "").strip()
    shape = token_shape(token)

    if shape == SHAPE_SIGNED:
        try:
            payload = decode_session_token(token)
        except ValueError:
            return None
        result = await db.execute(select(User).where(User.id == str(payload["sub"])))
        return result.scalar_one_or_none()

    if shape == SHAPE_OPAQUE:
        location_id = await validate_embed_session(token, db)
        if not location_id:
            return None
        result = await db.execute(select(User).where(User.location_id == location_id))
        return result.scalar_one_or_none()

    return None
