"""Hand generation jobs to the external automation workflows.

Delivery is best-effort: in ``background`` mode the payload is posted once
after the request commits and failures are only logged. ``queue`` mode pushes
the same payload through RQ so a worker retries it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from config import settings
from models.user import User
from models.video import Video
from services.pricing import Service, Tier, VideoType, parse_service, parse_tier, parse_video_type

logger = logging.getLogger(__name__)

DISPATCH_QUEUE_NAME = "dispatch_jobs"


class UnsupportedRouteError(ValueError):
    """The (service, tier, video type) combination is not offered."""


@dataclass(frozen=True)
class DispatchRoute:
    endpoint_setting: str
    image_fields: Tuple[str, ...] = ()

    @property
    def endpoint_url(self) -> str:
        return str(getattr(settings, self.endpoint_setting, "") or "").strip()


DISPATCH_ROUTES: Dict[Tuple[Service, bool, VideoType], DispatchRoute] = {
    (Service.SORA, False, VideoType.TEXT_TO_VIDEO): DispatchRoute("TEXT_TO_VIDEO_WEBHOOK_URL"),
    (Service.SORA, True, VideoType.TEXT_TO_VIDEO): DispatchRoute("TEXT_TO_VIDEO_PRO_WEBHOOK_URL"),
    (Service.SORA, False, VideoType.IMAGE_TO_VIDEO): DispatchRoute("SORA_IMAGE_WEBHOOK_URL", ("image_url",)),
    (Service.SORA, True, VideoType.IMAGE_TO_VIDEO): DispatchRoute("SORA_PRO_IMAGE_WEBHOOK_URL", ("image_url",)),
    (Service.VEO3, False, VideoType.TEXT_TO_VIDEO): DispatchRoute("VEO_TEXT_WEBHOOK_URL"),
    (Service.VEO3, False, VideoType.IMAGE_TO_VIDEO): DispatchRoute(
        "VEO_IMAGE_WEBHOOK_URL",
        ("start_frame_url", "end_frame_url"),
    ),
}


def resolve_route(service: Any, model: Any, video_type: Any) -> Tuple[Tuple[Service, bool, VideoType], DispatchRoute]:
    parsed_service = parse_service(service)
    parsed_type = parse_video_type(video_type)
    if parsed_service is None:
        raise UnsupportedRouteError(f"Unsupported service: {service}")
    if parsed_type is None:
        raise UnsupportedRouteError(f"Unsupported video type: {video_type}")
    key = (parsed_service, parse_tier(model) is Tier.PRO, parsed_type)
    route = DISPATCH_ROUTES.get(key)
    if route is None:
        tier = "pro" if key[1] else "standard"
        raise UnsupportedRouteError(
            f"{parsed_service.value} {tier} does not support {parsed_type.value} generation."
        )
    return key, route


def validate_dispatch_routes() -> List[str]:
    """Return the settings names of routes with no configured endpoint."""
    missing = sorted({route.endpoint_setting for route in DISPATCH_ROUTES.values() if not route.endpoint_url})
    for name in missing:
        logger.warning("Dispatch endpoint %s is not configured; its route will reject jobs", name)
    return missing


def build_dispatch_payload(
    job: Video,
    user: User,
    route: DispatchRoute,
    *,
    callback_url: str,
    requested_email: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "video_id": job.id,
        "user_id": user.id,
        "user_email": user.email,
        "video_prompt": job.prompt,
        "additional_details": job.additional_details or "",
        "callback_url": callback_url,
        "requested_email": requested_email or user.email,
        "aspect_ratio": job.aspect_ratio or "landscape",
        "service": job.service,
        "model": job.model,
        "video_type": job.video_type,
    }
    for field_name in route.image_fields:
        payload[field_name] = getattr(job, field_name)
    return payload


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


async def dispatch_generation(endpoint_url: str, payload: Dict[str, Any]) -> bool:
    """POST the job to its workflow. Never raises; returns delivery success."""
    try:
        async with _http_client(settings.DISPATCH_TIMEOUT_SECONDS) as client:
            response = await client.post(endpoint_url, json=payload)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Dispatch of video %s to %s failed: %s", payload.get("video_id"), endpoint_url, exc)
        return False
    logger.info("Dispatched video %s", payload.get("video_id"))
    return True


def get_dispatch_queue() -> Queue:
    return Queue(
        name=DISPATCH_QUEUE_NAME,
        connection=Redis.from_url(settings.REDIS_URL),
        default_timeout=600,
    )


def enqueue_dispatch(endpoint_url: str, payload: Dict[str, Any]) -> Job:
    """Queue a dispatch with retries for at-least-once delivery to the workflow."""
    return get_dispatch_queue().enqueue(
        "services.dispatcher.process_dispatch_job",
        endpoint_url,
        payload,
        job_id=f"dispatch:{payload['video_id']}",
        retry=Retry(max=3, interval=[15, 60, 180]),
        job_timeout=600,
        result_ttl=86400,
        failure_ttl=86400,
    )


def process_dispatch_job(endpoint_url: str, payload: Dict[str, Any]) -> None:
    """RQ worker entrypoint; raising makes RQ schedule the next retry."""
    delivered = asyncio.run(dispatch_generation(endpoint_url, payload))
    if not delivered:
        raise RuntimeError(f"Dispatch of video {payload.get('video_id')} was not accepted")


async def schedule_dispatch(endpoint_url: str, payload: Dict[str, Any]) -> None:
    """Deliver according to DISPATCH_MODE; queue outages fall back to a direct post."""
    if settings.DISPATCH_MODE == "queue":
        try:
            enqueue_dispatch(endpoint_url, payload)
            return
        except Exception as exc:
            logger.warning("Dispatch queue unavailable for video %s: %s", payload.get("video_id"), exc)
    await dispatch_generation(endpoint_url, payload)
