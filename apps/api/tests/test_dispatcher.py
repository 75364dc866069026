import json

import httpx
import pytest

from config import settings
from models.user import User
from models.video import Video
from services import dispatcher
from services.dispatcher import (
    DISPATCH_ROUTES,
    UnsupportedRouteError,
    build_dispatch_payload,
    dispatch_generation,
    process_dispatch_job,
    resolve_route,
    schedule_dispatch,
    validate_dispatch_routes,
)
from services.pricing import Service, VideoType


def _patch_transport(monkeypatch, handler):
    monkeypatch.setattr(
        dispatcher,
        "_http_client",
        lambda timeout: httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout),
    )


def test_route_table_covers_offered_combinations():
    assert len(DISPATCH_ROUTES) == 6
    (service, is_pro, video_type), route = resolve_route("SORA", "SORA 2 Pro", "image-to-video")
    assert (service, is_pro, video_type) == (Service.SORA, True, VideoType.IMAGE_TO_VIDEO)
    assert route.endpoint_setting == "SORA_PRO_IMAGE_WEBHOOK_URL"
    assert route.image_fields == ("image_url",)

    _, veo_image = resolve_route("VEO 3", "VEO 3 Fast", "image-to-video")
    assert veo_image.image_fields == ("start_frame_url", "end_frame_url")


def test_unsupported_combinations_raise():
    with pytest.raises(UnsupportedRouteError):
        resolve_route("VEO 3", "VEO 3 Pro", "text-to-video")
    with pytest.raises(UnsupportedRouteError):
        resolve_route("RUNWAY", None, "text-to-video")
    with pytest.raises(UnsupportedRouteError):
        resolve_route("SORA", None, "video-to-video")


def test_validate_dispatch_routes_reports_missing_endpoints(monkeypatch):
    for route in DISPATCH_ROUTES.values():
        monkeypatch.setattr(settings, route.endpoint_setting, "https://hooks.example.com/x")
    assert validate_dispatch_routes() == []

    monkeypatch.setattr(settings, "VEO_TEXT_WEBHOOK_URL", "")
    assert validate_dispatch_routes() == ["VEO_TEXT_WEBHOOK_URL"]


def test_payload_carries_job_identity_and_route_images():
    user = User(id="user-1", email="owner@example.com")
    job = Video(
        id="video-1",
        user_id="user-1",
        prompt="A fox in snow",
        additional_details=None,
        model="VEO 3 Fast",
        service="VEO 3",
        video_type="image-to-video",
        aspect_ratio="portrait",
        image_url="https://img.example.com/ignored.png",
        start_frame_url="https://img.example.com/start.png",
        end_frame_url="https://img.example.com/end.png",
    )
    _, route = resolve_route("VEO 3", "VEO 3 Fast", "image-to-video")

    payload = build_dispatch_payload(job, user, route, callback_url="https://api.example.com/videos/callback")

    assert payload["video_id"] == "video-1"
    assert payload["user_id"] == "user-1"
    assert payload["video_prompt"] == "A fox in snow"
    assert payload["additional_details"] == ""
    assert payload["callback_url"] == "https://api.example.com/videos/callback"
    assert payload["requested_email"] == "owner@example.com"
    assert payload["aspect_ratio"] == "portrait"
    assert payload["start_frame_url"] == "https://img.example.com/start.png"
    assert payload["end_frame_url"] == "https://img.example.com/end.png"
    assert "image_url" not in payload


@pytest.mark.asyncio
async def test_dispatch_posts_payload(monkeypatch):
    seen = []

    def handler(request):
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    _patch_transport(monkeypatch, handler)
    assert await dispatch_generation("https://hooks.example.com/sora", {"video_id": "v1"}) is True
    assert seen == [("https://hooks.example.com/sora", {"video_id": "v1"})]


@pytest.mark.asyncio
async def test_dispatch_failures_are_swallowed(monkeypatch):
    _patch_transport(monkeypatch, lambda request: httpx.Response(502))
    assert await dispatch_generation("https://hooks.example.com/sora", {"video_id": "v1"}) is False

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    _patch_transport(monkeypatch, refuse)
    assert await dispatch_generation("https://hooks.example.com/sora", {"video_id": "v1"}) is False


@pytest.mark.asyncio
async def test_queue_mode_falls_back_to_direct_post(monkeypatch):
    posted = []

    def handler(request):
        posted.append(json.loads(request.content)["video_id"])
        return httpx.Response(200)

    def broken_enqueue(endpoint_url, payload):
        raise ConnectionError("redis down")

    _patch_transport(monkeypatch, handler)
    monkeypatch.setattr(settings, "DISPATCH_MODE", "queue")
    monkeypatch.setattr(dispatcher, "enqueue_dispatch", broken_enqueue)

    await schedule_dispatch("https://hooks.example.com/sora", {"video_id": "v9"})
    assert posted == ["v9"]


def test_queued_job_raises_so_rq_retries(monkeypatch):
    _patch_transport(monkeypatch, lambda request: httpx.Response(500))
    with pytest.raises(RuntimeError):
        process_dispatch_job("https://hooks.example.com/sora", {"video_id": "v2"})
