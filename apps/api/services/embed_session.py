"""Embedded (iframe) identity: one-time handshake values and opaque sessions.

The handshake value is ``"<ms timestamp>.<hex hmac-sha256(timestamp)>"``,
signed with JWT_SECRET and valid for EMBED_HANDSHAKE_TTL_SECONDS. Sessions are
64-char hex tokens; only their sha256 is stored.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from urllib.parse import urlparse

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.embed_session import EmbedSession

logger = logging.getLogger(__name__)


def _sign(message: str) -> str:
    return hmac.new(settings.JWT_SECRET.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def create_handshake_value(now_ms: Optional[int] = None) -> str:
    timestamp = str(int(now_ms if now_ms is not None else time.time() * 1000))
    return f"{timestamp}.{_sign(timestamp)}"


def verify_handshake_value(value: str, ttl_seconds: Optional[int] = None, now_ms: Optional[int] = None) -> bool:
    parts = (value or "").split(".")
    if len(parts) != 2:
        return False
    timestamp, signature = parts
    if not timestamp.isdigit():
        return False

    ttl_ms = int(ttl_seconds if ttl_seconds is not None else settings.EMBED_HANDSHAKE_TTL_SECONDS) * 1000
    current_ms = int(now_ms if now_ms is not None else time.time() * 1000)
    if current_ms - int(timestamp) > ttl_ms:
        return False
    return hmac.compare_digest(signature, _sign(timestamp))


def is_allowed_referer(referer: Optional[str], patterns: Optional[List[str]] = None) -> bool:
    """Match the Referer host exactly, or against ``*.domain`` wildcards."""
    if not referer:
        return False
    try:
        host = (urlparse(referer).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False

    for pattern in patterns if patterns is not None else settings.EMBED_ALLOWED_REFERER_DOMAINS:
        pattern = pattern.strip().lower()
        if not pattern:
            continue
        if pattern.startswith("*."):
            if host.endswith(pattern[1:]) or host == pattern[2:]:
                return True
        elif host == pattern:
            return True
    return False


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def create_embed_session(location_id: str, db: AsyncSession) -> str:
    """Mint a session for the location, replacing any earlier one. Returns the raw token.

    ``location_id`` is unique, so the row is rewritten in place; a concurrent
    first insert for the same location loses on the constraint and retries as
    an update.
    """
    raw_token = secrets.token_hex(32)
    values = {
        "token_hash": hash_session_token(raw_token),
        "expires_at": datetime.now(timezone.utc) + timedelta(hours=max(int(settings.EMBED_SESSION_TTL_HOURS), 1)),
    }
    replace = (
        update(EmbedSession)
        .where(EmbedSession.location_id == location_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    result = await db.execute(replace)
    if result.rowcount == 0:
        db.add(EmbedSession(location_id=location_id, **values))
        try:
            await db.commit()
            return raw_token
        except IntegrityError:
            await db.rollback()
            await db.execute(replace)
    await db.commit()
    return raw_token


async def validate_embed_session(token: str, db: AsyncSession) -> Optional[str]:
    """Return the session's location id, or None. Expired rows are removed."""
    result = await db.execute(select(EmbedSession).where(EmbedSession.token_hash == hash_session_token(token)))
    session = result.scalar_one_or_none()
    if not session:
        return None

    expires_at = session.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if datetime.now(timezone.utc) > expires_at:
        logger.info("Embedded session for location %s expired", session.location_id)
        await db.delete(session)
        await db.commit()
        return None
    return session.location_id


async def revoke_embed_session(token: str, db: AsyncSession) -> bool:
    result = await db.execute(delete(EmbedSession).where(EmbedSession.token_hash == hash_session_token(token)))
    await db.commit()
    return bool(result.rowcount)
