"""Video generation job lifecycle: creation, callbacks, listing and deletion."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import callback_url
from models.user import User
from models.video import Video
from services.dispatcher import UnsupportedRouteError, build_dispatch_payload, resolve_route
from services.ledger import TRANSACTION_REFUND, TRANSACTION_USAGE, credit_credits, debit_credits
from services.pricing import VideoType, credit_cost

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
UNRESOLVED_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)
CALLBACK_STATUSES = {STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED}
STALE_AFTER = timedelta(hours=1)


@dataclass
class GenerationRequest:
    prompt: str
    additional_details: Optional[str] = None
    aspect_ratio: Optional[str] = None
    model: Optional[str] = None
    service: Optional[str] = None
    video_type: Optional[str] = None
    requested_email: Optional[str] = None
    image_url: Optional[str] = None
    start_frame_url: Optional[str] = None
    end_frame_url: Optional[str] = None


@dataclass
class CreatedJob:
    video: Video
    endpoint_url: str
    payload: Dict[str, Any]
    balance_after: int


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_stale(video: Video, now: Optional[datetime] = None) -> bool:
    """Display-only flag: unresolved and older than an hour."""
    if video.status not in UNRESOLVED_STATUSES:
        return False
    created_at = _as_utc(video.created_at)
    if created_at is None:
        return False
    current = now or datetime.now(timezone.utc)
    return current - created_at > STALE_AFTER


def serialize_video(video: Video, now: Optional[datetime] = None) -> Dict[str, Any]:
    created_at = _as_utc(video.created_at)
    completed_at = _as_utc(video.completed_at)
    return {
        "id": video.id,
        "prompt": video.prompt,
        "additional_details": video.additional_details,
        "video_url": video.video_url,
        "status": video.status,
        "model": video.model,
        "service": video.service,
        "video_type": video.video_type,
        "aspect_ratio": video.aspect_ratio,
        "credits_charged": video.credits_charged,
        "error_message": video.error_message,
        "is_stale": is_stale(video, now),
        "created_at": created_at.isoformat() if created_at else None,
        "completed_at": completed_at.isoformat() if completed_at else None,
    }


def _validate_images(video_type: VideoType, image_fields, request: GenerationRequest) -> None:
    if video_type is not VideoType.IMAGE_TO_VIDEO:
        return
    missing = [name for name in image_fields if not (getattr(request, name) or "").strip()]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing image input: {', '.join(missing)}")


async def create_generation_job(user: User, request: GenerationRequest, db: AsyncSession) -> CreatedJob:
    """Charge the user and persist a pending job in one transaction.

    Route and endpoint are resolved before any write, so an unsupported or
    unconfigured route never costs credits. Dispatch is the caller's job and
    happens only after this commit.
    """
    prompt = (request.prompt or "").strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="Prompt is required")

    try:
        (service, _is_pro, video_type), route = resolve_route(request.service, request.model, request.video_type)
    except UnsupportedRouteError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _validate_images(video_type, route.image_fields, request)

    endpoint_url = route.endpoint_url
    if not endpoint_url:
        logger.error("No endpoint configured for %s (%s)", route.endpoint_setting, service.value)
        raise HTTPException(status_code=503, detail="Video generation is temporarily unavailable.")

    cost = credit_cost(request.model, service.value)
    video = Video(
        user_id=user.id,
        prompt=prompt,
        additional_details=request.additional_details or None,
        model=request.model,
        service=service.value,
        video_type=video_type.value,
        aspect_ratio=request.aspect_ratio or "landscape",
        image_url=request.image_url if "image_url" in route.image_fields else None,
        start_frame_url=request.start_frame_url if "start_frame_url" in route.image_fields else None,
        end_frame_url=request.end_frame_url if "end_frame_url" in route.image_fields else None,
        credits_charged=cost,
        status=STATUS_PENDING,
    )
    db.add(video)
    await db.flush()

    balance_after = await debit_credits(
        user.id,
        db,
        amount=cost,
        reason=f"Used {cost} credits for video generation",
        transaction_type=TRANSACTION_USAGE,
        reference_id=video.id,
        commit=False,
    )
    if balance_after is None:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Insufficient credits. Please purchase more credits.")

    await db.commit()
    await db.refresh(video)
    logger.info("video_created user=%s video=%s cost=%s", user.id, video.id, cost)

    payload = build_dispatch_payload(
        video,
        user,
        route,
        callback_url=callback_url(),
        requested_email=request.requested_email,
    )
    return CreatedJob(video=video, endpoint_url=endpoint_url, payload=payload, balance_after=balance_after)


async def _refund_job(video: Video, db: AsyncSession, reason: str) -> None:
    await credit_credits(
        video.user_id,
        db,
        amount=int(video.credits_charged or 0),
        reason=reason,
        transaction_type=TRANSACTION_REFUND,
        reference_id=video.id,
        commit=False,
    )


async def _claim_transition(db: AsyncSession, video_id: str, values: Dict[str, Any]) -> bool:
    """Move an unresolved job to new values; False if another writer got there first."""
    result = await db.execute(
        update(Video)
        .where(Video.id == video_id, Video.status.in_(UNRESOLVED_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def apply_callback(
    db: AsyncSession,
    *,
    video_id: str,
    status: Optional[str] = None,
    video_url: Optional[str] = None,
    task_id: Optional[str] = None,
    error_message: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a worker report. Unknown jobs and already-resolved jobs are ignored."""
    next_status = (status or STATUS_COMPLETED).strip().lower()
    if next_status not in CALLBACK_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unsupported status: {status}")

    result = await db.execute(select(Video).where(Video.id == video_id))
    video = result.scalar_one_or_none()
    if not video:
        logger.warning("Callback for unknown video %s ignored", video_id)
        return {"success": True, "ignored": "not_found"}
    if video.status in TERMINAL_STATUSES:
        logger.info("Callback for resolved video %s (%s) ignored", video_id, video.status)
        return {"success": True, "ignored": "already_resolved", "status": video.status}

    now = datetime.now(timezone.utc)
    values: Dict[str, Any] = {"status": next_status}
    if task_id:
        values["task_id"] = task_id
    if next_status == STATUS_COMPLETED:
        values.update(video_url=video_url or None, completed_at=now)
    elif next_status == STATUS_FAILED:
        values.update(error_message=(error_message or "Video generation failed")[:1000], completed_at=now)

    if not await _claim_transition(db, video.id, values):
        await db.rollback()
        return {"success": True, "ignored": "already_resolved"}

    if next_status == STATUS_FAILED:
        await _refund_job(video, db, f"Refunded {video.credits_charged} credits for failed video generation")
    await db.commit()
    logger.info("video_callback video=%s status=%s", video.id, next_status)
    return {"success": True, "status": next_status}


async def list_jobs(user_id: str, db: AsyncSession) -> List[Video]:
    result = await db.execute(
        select(Video).where(Video.user_id == user_id).order_by(Video.created_at.desc(), Video.id.desc())
    )
    return list(result.scalars().all())


async def get_job(user_id: str, video_id: str, db: AsyncSession) -> Video:
    result = await db.execute(select(Video).where(Video.id == video_id, Video.user_id == user_id))
    video = result.scalar_one_or_none()
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")
    return video


async def delete_job(user_id: str, video_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Delete an owned job; stale unresolved jobs get their credits back."""
    video = await get_job(user_id, video_id, db)
    refunded = 0
    if is_stale(video):
        await _refund_job(video, db, f"Refunded {video.credits_charged} credits for abandoned video generation")
        refunded = int(video.credits_charged or 0)
    await db.delete(video)
    await db.commit()
    logger.info("video_deleted user=%s video=%s refunded=%s", user_id, video_id, refunded)
    return {"success": True, "refunded": refunded}
