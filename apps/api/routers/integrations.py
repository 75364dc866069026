"""CRM integration settings: status, connect (validate + upsert) and disconnect."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.crm_integration import CrmIntegration
from models.user import AUTH_TYPE_EMBEDDED, User
from routers.auth_scope import get_current_user
from services.crm import CrmError, validate_subaccount_key
from services.crypto import encrypt_secret

router = APIRouter()
logger = logging.getLogger(__name__)


class ConnectCrmRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(default="", alias="apiKey")
    location_id: Optional[str] = Field(default=None, alias="locationId")


def _serialize(integration: CrmIntegration) -> dict:
    # The credential itself is never returned.
    return {
        "id": integration.id,
        "location_id": integration.location_id,
        "business_name": integration.business_name,
        "business_email": integration.business_email,
        "business_phone": integration.business_phone,
        "location_name": integration.location_name,
        "location_email": integration.location_email,
        "is_connected": integration.is_connected,
        "created_at": integration.created_at.isoformat() if integration.created_at else None,
        "updated_at": integration.updated_at.isoformat() if integration.updated_at else None,
    }


async def get_integration(user_id: str, db: AsyncSession) -> Optional[CrmIntegration]:
    result = await db.execute(select(CrmIntegration).where(CrmIntegration.user_id == user_id))
    return result.scalar_one_or_none()


@router.get("/crm")
async def crm_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    integration = await get_integration(user.id, db)
    return {
        "integration": _serialize(integration) if integration else None,
        "user_location_id": user.location_id,
        "is_embedded_user": user.auth_type == AUTH_TYPE_EMBEDDED,
    }


@router.post("/crm")
async def connect_crm(
    request: ConnectCrmRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Validate a sub-account key against the CRM and store it encrypted."""
    api_key = request.api_key.strip()
    if not api_key:
        raise HTTPException(status_code=400, detail="API key is required")

    location_id = (request.location_id or "").strip() or user.location_id
    if not location_id:
        raise HTTPException(status_code=400, detail="Location ID is required. Please provide your CRM Location ID.")

    try:
        validation = await validate_subaccount_key(api_key, location_id)
    except CrmError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc

    user_id = user.id
    integration = await get_integration(user_id, db)
    if integration is None:
        integration = CrmIntegration(user_id=user_id)
        db.add(integration)
    integration.api_key_encrypted = encrypt_secret(api_key)
    integration.location_id = location_id
    integration.business_name = validation.display_name
    integration.business_email = validation.display_email
    integration.business_phone = validation.display_phone
    integration.location_name = validation.location.name or None
    integration.location_email = validation.location.email or None
    integration.is_connected = True
    await db.commit()
    await db.refresh(integration)
    serialized = _serialize(integration)
    logger.info("crm_connected user=%s location=%s", user_id, location_id)

    real_email = validation.display_email
    if user.has_placeholder_email and real_email:
        user.email = real_email.strip().lower()
        try:
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            logger.warning("Could not replace placeholder email for user %s: %s", user_id, exc.orig)

    return {"success": True, "integration": serialized}


@router.delete("/crm")
async def disconnect_crm(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(CrmIntegration).where(CrmIntegration.user_id == user.id))
    await db.commit()
    return {"success": True}
