import json

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.future import select

from config import settings
from models.crm_integration import CrmIntegration
from models.user import User
from models.video import Video
from routers import integrations as integrations_router
from routers import social as social_router
from services import crm
from services.crm import (
    BusinessInfo,
    CrmError,
    LocationInfo,
    SocialAccount,
    SocialPostRequest,
    SubaccountValidation,
    create_social_post,
    get_connected_accounts,
    upload_media_from_url,
    validate_location,
)
from services.crypto import decrypt_secret


@pytest.fixture
def crm_validation(monkeypatch):
    async def fake_validate(api_key, location_id):
        if api_key == "bad-key":
            raise CrmError("Invalid API key or insufficient permissions.", 401)
        return SubaccountValidation(
            location=LocationInfo(id=location_id, name="Acme HQ", email="hq@acme.test"),
            business=BusinessInfo(name="Acme Roofing", email="owner@acme.test", phone="+15550100"),
        )

    monkeypatch.setattr(integrations_router, "validate_subaccount_key", fake_validate)


async def _connect(client, headers, **body):
    return await client.post("/integrations/crm", json={"apiKey": "pit-secret-key", **body}, headers=headers)


@pytest.mark.asyncio
async def test_connect_stores_encrypted_key_and_never_returns_it(integration_client, make_user, session_maker, crm_validation):
    user, headers = await make_user(credits=0)

    rejected = await _connect(integration_client, headers)
    assert rejected.status_code == 400

    bad_key = await integration_client.post(
        "/integrations/crm", json={"apiKey": "bad-key", "locationId": "loc-1"}, headers=headers
    )
    assert bad_key.status_code == 400

    connected = await _connect(integration_client, headers, locationId="loc-1")
    assert connected.status_code == 200
    assert "pit-secret-key" not in connected.text
    assert connected.json()["integration"]["business_name"] == "Acme Roofing"

    status = await integration_client.get("/integrations/crm", headers=headers)
    assert status.json()["integration"]["location_id"] == "loc-1"
    assert status.json()["is_embedded_user"] is False
    assert "api_key" not in json.dumps(status.json())

    async with session_maker() as session:
        integration = (
            await session.execute(select(CrmIntegration).where(CrmIntegration.user_id == user.id))
        ).scalar_one()
    assert integration.api_key_encrypted != "pit-secret-key"
    assert decrypt_secret(integration.api_key_encrypted) == "pit-secret-key"

    profile = await integration_client.get("/auth/me", headers=headers)
    assert profile.json()["business_name"] == "Acme Roofing"
    assert profile.json()["crm_connected"] is True

    disconnected = await integration_client.delete("/integrations/crm", headers=headers)
    assert disconnected.json() == {"success": True}
    assert (await integration_client.get("/integrations/crm", headers=headers)).json()["integration"] is None


@pytest.mark.asyncio
async def test_embedded_user_gets_real_email_on_connect(integration_client, make_user, session_maker, crm_validation):
    user, headers = await make_user(location_id="loc-embed")
    async with session_maker() as session:
        db_user = await session.get(User, user.id)
        db_user.email = "location_loc-embed@embedded.placeholder"
        await session.commit()

    connected = await _connect(integration_client, headers)
    assert connected.status_code == 200
    assert connected.json()["integration"]["location_id"] == "loc-embed"

    async with session_maker() as session:
        assert (await session.get(User, user.id)).email == "owner@acme.test"


@pytest_asyncio.fixture
async def connected_user(integration_client, make_user, session_maker, crm_validation):
    user, headers = await make_user(credits=0)
    await _connect(integration_client, headers, locationId="loc-social")
    async with session_maker() as session:
        session.add(
            Video(
                id="finished-video",
                user_id=user.id,
                prompt="done",
                credits_charged=5,
                status="completed",
                video_url="https://cdn.example.com/finished.mp4",
            )
        )
        session.add(Video(id="pending-video", user_id=user.id, prompt="wait", credits_charged=5, status="pending"))
        await session.commit()
    return user, headers


@pytest.mark.asyncio
async def test_social_post_requires_connection_and_owned_completed_video(integration_client, make_user, connected_user):
    _, stranger_headers = await make_user(credits=0)
    body = {"videoId": "finished-video", "accountIds": ["acc-1"], "summary": "New reel!"}

    not_connected = await integration_client.post("/social/post", json=body, headers=stranger_headers)
    assert not_connected.status_code == 400
    assert (await integration_client.get("/social/accounts", headers=stranger_headers)).status_code == 400

    _, headers = connected_user
    assert (await integration_client.post("/social/post", json={**body, "accountIds": []}, headers=headers)).status_code == 400
    assert (await integration_client.post("/social/post", json={**body, "summary": " "}, headers=headers)).status_code == 400
    assert (await integration_client.post("/social/post", json={**body, "videoId": "nope"}, headers=headers)).status_code == 404
    pending = await integration_client.post("/social/post", json={**body, "videoId": "pending-video"}, headers=headers)
    assert pending.status_code == 400


@pytest.mark.asyncio
async def test_social_post_falls_back_to_media_upload(integration_client, connected_user, monkeypatch):
    _, headers = connected_user
    attempts = []

    async def fake_create_post(api_key, location_id, post):
        attempts.append(list(post.media))
        assert api_key == "pit-secret-key"
        if post.media == ["https://cdn.example.com/finished.mp4"]:
            raise CrmError("Bad request: media url not reachable", 400)
        return "post-77"

    async def fake_upload(api_key, location_id, video_url):
        return "https://storage.crm.example/hosted.mp4"

    monkeypatch.setattr(social_router, "create_social_post", fake_create_post)
    monkeypatch.setattr(social_router, "upload_media_from_url", fake_upload)

    resp = await integration_client.post(
        "/social/post",
        json={"videoId": "finished-video", "accountIds": ["acc-1"], "summary": "New reel!", "scheduledDate": "2026-11-01T10:00:00Z"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["post_id"] == "post-77"
    assert resp.json()["message"] == "Post scheduled successfully!"
    assert attempts == [["https://cdn.example.com/finished.mp4"], ["https://storage.crm.example/hosted.mp4"]]


@pytest.mark.asyncio
async def test_social_accounts_proxy(integration_client, connected_user, monkeypatch):
    _, headers = connected_user

    async def fake_accounts(api_key, location_id):
        return [SocialAccount(id="acc-1", name="Acme IG", platform="instagram")]

    monkeypatch.setattr(social_router, "get_connected_accounts", fake_accounts)
    resp = await integration_client.get("/social/accounts", headers=headers)
    assert resp.json()["accounts"][0]["platform"] == "instagram"


def _patch_crm_transport(monkeypatch, handler):
    monkeypatch.setattr(
        crm,
        "_http_client",
        lambda timeout: httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout),
    )


@pytest.mark.asyncio
async def test_validate_location_checks_agency_ownership(monkeypatch):
    monkeypatch.setattr(settings, "CRM_AGENCY_API_KEY", "agency-key")
    monkeypatch.setattr(settings, "CRM_COMPANY_ID", "company-1")

    def handler(request):
        assert request.headers["Authorization"] == "Bearer agency-key"
        assert request.headers["Version"] == settings.CRM_API_VERSION
        location_id = request.url.path.rsplit("/", 1)[-1]
        if location_id == "missing":
            return httpx.Response(404, json={"message": "not found"})
        company = "company-1" if location_id == "ours" else "company-2"
        return httpx.Response(200, json={"location": {"id": location_id, "name": "Shop", "companyId": company}})

    _patch_crm_transport(monkeypatch, handler)
    assert (await validate_location("ours")).name == "Shop"
    with pytest.raises(CrmError):
        await validate_location("theirs")
    with pytest.raises(CrmError):
        await validate_location("missing")


@pytest.mark.asyncio
async def test_create_social_post_body(monkeypatch):
    sent = []

    def handler(request):
        if request.url.path.endswith("/users/"):
            return httpx.Response(200, json={"users": [{"id": "crm-user-1"}]})
        sent.append(json.loads(request.content))
        return httpx.Response(201, json={"results": {"id": "post-1"}})

    _patch_crm_transport(monkeypatch, handler)
    post_id = await create_social_post(
        "sub-key",
        "loc-1",
        SocialPostRequest(account_ids=["a1"], summary="Hello", media=["https://cdn/x.mp4"], scheduled_date="2026-11-01T10:00:00Z"),
    )
    assert post_id == "post-1"
    assert sent[0]["userId"] == "crm-user-1"
    assert sent[0]["status"] == "scheduled"
    assert sent[0]["scheduleDate"] == "2026-11-01T10:00:00Z"
    assert sent[0]["media"] == ["https://cdn/x.mp4"]


def _html_page(request):
    return httpx.Response(200, text="<html><body>Gateway login</body></html>", headers={"content-type": "text/html"})


@pytest.mark.asyncio
async def test_non_json_success_bodies_raise_crm_error(monkeypatch):
    monkeypatch.setattr(settings, "CRM_AGENCY_API_KEY", "agency-key")
    _patch_crm_transport(monkeypatch, _html_page)

    with pytest.raises(CrmError) as location_error:
        await validate_location("loc-1")
    assert location_error.value.status_code == 200
    with pytest.raises(CrmError):
        await get_connected_accounts("pit-key", "loc-1")
    with pytest.raises(CrmError):
        await upload_media_from_url("pit-key", "loc-1", "https://cdn.example.com/finished.mp4")


@pytest.mark.asyncio
async def test_social_accounts_answers_400_when_crm_returns_html(integration_client, connected_user, monkeypatch):
    _, headers = connected_user
    _patch_crm_transport(monkeypatch, _html_page)

    resp = await integration_client.get("/social/accounts", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Failed to fetch connected social media accounts."
