"""Authentication dependencies resolving the bearer credential to a user."""

from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from services.identity import resolve_bearer


auth_scheme = HTTPBearer(auto_error=False)


def bearer_value(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if not credentials or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return credentials.credentials


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller from either a signed token or an embedded session token."""
    user = await resolve_bearer(bearer_value(credentials), db)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
