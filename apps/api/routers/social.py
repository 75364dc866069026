"""Social publishing router proxying to the CRM social planner."""

import logging
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.crm_integration import CrmIntegration
from models.user import User
from models.video import Video
from routers.auth_scope import get_current_user
from services.crm import CrmError, SocialPostRequest, create_social_post, get_connected_accounts, upload_media_from_url
from services.crypto import decrypt_secret
from services.generation import STATUS_COMPLETED

router = APIRouter()
logger = logging.getLogger(__name__)

NOT_CONNECTED = "CRM integration not connected. Please connect your CRM account in Settings."


class SocialPostBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(default="", alias="videoId")
    account_ids: List[str] = Field(default_factory=list, alias="accountIds")
    summary: str = ""
    scheduled_date: Optional[str] = Field(default=None, alias="scheduledDate")


async def _connected_credentials(user_id: str, db: AsyncSession):
    result = await db.execute(select(CrmIntegration).where(CrmIntegration.user_id == user_id))
    integration = result.scalar_one_or_none()
    if not integration or not integration.is_connected:
        raise HTTPException(status_code=400, detail=NOT_CONNECTED)
    return decrypt_secret(integration.api_key_encrypted), integration.location_id


@router.get("/accounts")
async def list_social_accounts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    api_key, location_id = await _connected_credentials(user.id, db)
    try:
        accounts = await get_connected_accounts(api_key, location_id)
    except CrmError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"accounts": [asdict(account) for account in accounts]}


@router.post("/post")
async def create_post(
    body: SocialPostBody,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Publish (or schedule) a completed video to the selected accounts.

    The CRM is first given the video URL directly; if it refuses, the video is
    re-hosted in CRM media storage and the post is retried once.
    """
    if not body.video_id:
        raise HTTPException(status_code=400, detail="videoId is required.")
    if not body.account_ids:
        raise HTTPException(status_code=400, detail="At least one social account must be selected.")
    summary = body.summary.strip()
    if not summary:
        raise HTTPException(status_code=400, detail="A caption/summary is required.")

    api_key, location_id = await _connected_credentials(user.id, db)

    result = await db.execute(select(Video).where(Video.id == body.video_id))
    video = result.scalar_one_or_none()
    if not video:
        raise HTTPException(status_code=404, detail="Video not found.")
    if video.user_id != user.id:
        raise HTTPException(status_code=403, detail="Unauthorized access to this video.")
    if video.status != STATUS_COMPLETED or not video.video_url:
        raise HTTPException(status_code=400, detail="Video is not yet completed or has no URL.")

    post = SocialPostRequest(
        account_ids=body.account_ids,
        summary=summary,
        media=[video.video_url],
        scheduled_date=body.scheduled_date,
    )
    try:
        post_id = await create_social_post(api_key, location_id, post)
    except CrmError as direct_error:
        logger.info("Direct-URL social post failed for video %s (%s); re-hosting media", video.id, direct_error.message)
        try:
            post.media = [await upload_media_from_url(api_key, location_id, video.video_url)]
            post_id = await create_social_post(api_key, location_id, post)
        except CrmError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc

    return {
        "success": True,
        "post_id": post_id,
        "message": "Post scheduled successfully!" if body.scheduled_date else "Posted successfully!",
    }
