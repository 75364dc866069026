"""
Video generation router: job creation, owner-scoped reads/deletes and the worker callback.
"""

import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.dispatcher import schedule_dispatch
from services.generation import (
    GenerationRequest,
    apply_callback,
    create_generation_job,
    delete_job,
    get_job,
    list_jobs,
    serialize_video,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class GenerateVideoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    prompt: str = ""
    additional_details: Optional[str] = Field(default=None, alias="additionalDetails")
    aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")
    model: Optional[str] = None
    service: Optional[str] = None
    video_type: Optional[str] = Field(default=None, alias="videoType")
    requested_email: Optional[str] = Field(default=None, alias="requestedEmail")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    start_frame_url: Optional[str] = Field(default=None, alias="startFrameUrl")
    end_frame_url: Optional[str] = Field(default=None, alias="endFrameUrl")


class CallbackRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_id: Optional[str] = None
    video_url: Optional[str] = None
    status: Optional[str] = None
    task_id: Optional[str] = Field(default=None, alias="n8n_task_id")
    error_message: Optional[str] = None


def _infer_video_type(request: GenerateVideoRequest) -> Optional[str]:
    if request.video_type:
        return request.video_type
    if request.image_url or request.start_frame_url or request.end_frame_url:
        return "image-to-video"
    return None


@router.post("/generate")
async def generate_video(
    request: GenerateVideoRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Charge credits, persist a pending job, then hand it to the workflow."""
    created = await create_generation_job(
        user,
        GenerationRequest(
            prompt=request.prompt,
            additional_details=request.additional_details,
            aspect_ratio=request.aspect_ratio,
            model=request.model,
            service=request.service,
            video_type=_infer_video_type(request),
            requested_email=request.requested_email,
            image_url=request.image_url,
            start_frame_url=request.start_frame_url,
            end_frame_url=request.end_frame_url,
        ),
        db,
    )
    background_tasks.add_task(schedule_dispatch, created.endpoint_url, created.payload)

    video = created.video
    return {
        "video": {
            "id": video.id,
            "status": video.status,
            "credits_charged": video.credits_charged,
            "created_at": serialize_video(video)["created_at"],
        },
        "credits_balance": created.balance_after,
    }


@router.get("")
async def list_videos(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """All of the caller's jobs, most recent first."""
    videos = await list_jobs(user.id, db)
    return {"videos": [serialize_video(video) for video in videos]}


@router.post("/callback")
async def video_callback(
    request: CallbackRequest,
    x_callback_secret: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Worker report. Unauthenticated unless CALLBACK_SECRET is configured."""
    expected = settings.CALLBACK_SECRET
    if expected and not hmac.compare_digest(x_callback_secret or "", expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not request.video_id:
        raise HTTPException(status_code=400, detail="video_id is required")

    return await apply_callback(
        db,
        video_id=request.video_id,
        status=request.status,
        video_url=request.video_url,
        task_id=request.task_id,
        error_message=request.error_message,
    )


@router.get("/{video_id}")
async def get_video(
    video_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    video = await get_job(user.id, video_id, db)
    return {"video": serialize_video(video)}


@router.delete("/{video_id}")
async def remove_video(
    video_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await delete_job(user.id, video_id, db)
