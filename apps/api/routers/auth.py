"""
Authentication router: password registration/login and the caller's profile.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.crm_integration import CrmIntegration
from models.user import AUTH_TYPE_PASSWORD, User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.passwords import hash_password, verify_password
from services.session_token import create_session_token

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=3, max_length=254)
    password: str = Field(min_length=1, max_length=256)


class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: str


class UserProjection(BaseModel):
    id: str
    username: str
    email: str
    credits_balance: int


class AuthResponse(BaseModel):
    token: str
    expires_at: int
    user: UserProjection


class ProfileResponse(UserProjection):
    business_name: Optional[str] = None
    crm_connected: bool = False


def project_user(user: User) -> UserProjection:
    return UserProjection(
        id=user.id,
        username=user.username,
        email=user.email,
        credits_balance=user.credits_balance,
    )


@router.post("/register", response_model=AuthResponse)
async def register(
    request: RegisterRequest,
    _rate_limit: None = Depends(rate_limit("auth_register", limit=10, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    """Create a password account and return its bearer token."""
    username = request.username.strip()
    email = request.email.strip().lower()
    if not username or "@" not in email:
        raise HTTPException(status_code=400, detail="Username, email and password are required")
    if "@" in username:
        raise HTTPException(status_code=400, detail="Username cannot contain \"@\"")

    existing = await db.execute(select(User.id).where(or_(User.username == username, User.email == email)).limit(1))
    if existing.first():
        raise HTTPException(status_code=409, detail="Username or email already in use")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(request.password),
        credits_balance=0,
        auth_type=AUTH_TYPE_PASSWORD,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("user_registered user=%s", user.id)

    session = create_session_token(user.id)
    return AuthResponse(token=session["token"], expires_at=session["expires_at"], user=project_user(user))


async def _password_user(db: AsyncSession, criterion) -> Optional[User]:
    result = await db.execute(select(User).where(User.auth_type == AUTH_TYPE_PASSWORD, criterion))
    return result.scalar_one_or_none()


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    _rate_limit: None = Depends(rate_limit("auth_login", limit=30, window_seconds=900)),
    db: AsyncSession = Depends(get_db),
):
    username = (request.username or "").strip()
    email = (request.email or "").strip().lower()
    if not (username or email) or not request.password:
        raise HTTPException(status_code=400, detail="Username (or email) and password are required")

    # Username match wins; the username field also accepts an email address.
    user = await _password_user(db, User.username == username) if username else None
    if user is None:
        user = await _password_user(db, User.email == (email or username.lower()))
    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    session = create_session_token(user.id)
    return AuthResponse(token=session["token"], expires_at=session["expires_at"], user=project_user(user))


@router.get("/me", response_model=ProfileResponse)
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Profile projection plus the CRM business name for the welcome banner."""
    result = await db.execute(select(CrmIntegration).where(CrmIntegration.user_id == user.id))
    integration = result.scalar_one_or_none()
    connected = bool(integration and integration.is_connected)
    business_name = (integration.business_name or integration.location_name) if connected else None

    return ProfileResponse(
        **project_user(user).model_dump(),
        business_name=business_name,
        crm_connected=connected,
    )
