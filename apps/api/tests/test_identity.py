from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select

from config import settings
from models.embed_session import EmbedSession
from routers import embed as embed_router
from services import identity
from services.crm import CrmError, LocationInfo
from services.embed_session import (
    create_embed_session,
    create_handshake_value,
    hash_session_token,
    is_allowed_referer,
    validate_embed_session,
    verify_handshake_value,
)
from services.identity import SHAPE_OPAQUE, SHAPE_SIGNED, resolve_bearer, token_shape
from services.session_token import create_session_token


def test_token_shapes():
    assert token_shape(create_session_token("user-1")["token"]) == SHAPE_SIGNED
    assert token_shape("ab" * 32) == SHAPE_OPAQUE
    assert token_shape("AB" * 32) is None
    assert token_shape("ab" * 31) is None
    assert token_shape("two.segments") is None
    assert token_shape("") is None


@pytest.mark.asyncio
async def test_each_shape_consults_exactly_one_verifier(session_maker, monkeypatch):
    def no_jwt(token):
        raise AssertionError("signed verifier consulted for an opaque token")

    async def no_embed(token, db):
        raise AssertionError("embedded verifier consulted for a signed token")

    async with session_maker() as session:
        monkeypatch.setattr(identity, "decode_session_token", no_jwt)
        assert await resolve_bearer("cd" * 32, session) is None

        monkeypatch.undo()
        monkeypatch.setattr(identity, "validate_embed_session", no_embed)
        assert await resolve_bearer(create_session_token("missing-user")["token"], session) is None
        assert await resolve_bearer("a.b.c", session) is None


@pytest.mark.asyncio
async def test_both_identity_kinds_resolve(session_maker, make_user):
    direct, _ = await make_user(credits=3)
    embedded, _ = await make_user(credits=0, location_id="loc-resolve")

    async with session_maker() as session:
        token = await create_embed_session("loc-resolve", session)
        assert (await resolve_bearer(token, session)).id == embedded.id
        assert (await resolve_bearer(create_session_token(direct.id)["token"], session)).id == direct.id


@pytest.mark.asyncio
async def test_expired_embed_session_is_rejected_and_removed(session_maker, make_user):
    await make_user(location_id="loc-expired")
    raw_token = "ef" * 32

    async with session_maker() as session:
        session.add(
            EmbedSession(
                location_id="loc-expired",
                token_hash=hash_session_token(raw_token),
                expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
            )
        )
        await session.commit()

    async with session_maker() as session:
        assert await resolve_bearer(raw_token, session) is None

    async with session_maker() as session:
        result = await session.execute(select(EmbedSession).where(EmbedSession.location_id == "loc-expired"))
        assert result.scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_location_holds_a_single_embed_session(session_maker):
    async with session_maker() as session:
        session.add(EmbedSession(location_id="loc-single", token_hash="a" * 64, expires_at=datetime.now(timezone.utc)))
        session.add(EmbedSession(location_id="loc-single", token_hash="b" * 64, expires_at=datetime.now(timezone.utc)))
        with pytest.raises(IntegrityError):
            await session.commit()


@pytest.mark.asyncio
async def test_losing_the_first_insert_race_replaces_the_other_session(session_maker):
    async with session_maker() as session:
        winner = await create_embed_session("loc-race", session)

    async with session_maker() as session:
        real_execute = session.execute
        statements = []

        async def update_saw_no_row_yet(statement, *args, **kwargs):
            # The competing insert committed just after this update ran.
            statements.append(statement)
            if len(statements) == 1:
                return SimpleNamespace(rowcount=0)
            return await real_execute(statement, *args, **kwargs)

        session.execute = update_saw_no_row_yet
        latest = await create_embed_session("loc-race", session)
        assert len(statements) == 2

    async with session_maker() as session:
        rows = (await session.execute(select(EmbedSession).where(EmbedSession.location_id == "loc-race"))).scalars().all()
        assert len(rows) == 1
        assert await validate_embed_session(latest, session) == "loc-race"
        assert await validate_embed_session(winner, session) is None


def test_handshake_value_ttl_and_signature():
    value = create_handshake_value(now_ms=1_000_000)
    assert verify_handshake_value(value, ttl_seconds=120, now_ms=1_000_000 + 119_000)
    assert not verify_handshake_value(value, ttl_seconds=120, now_ms=1_000_000 + 121_000)

    timestamp, signature = value.split(".")
    forged = f"{int(timestamp) + 1}.{signature}"
    assert not verify_handshake_value(forged, ttl_seconds=120, now_ms=1_000_000)
    assert not verify_handshake_value("garbage", ttl_seconds=120, now_ms=1_000_000)
    assert not verify_handshake_value("abc.def", ttl_seconds=120, now_ms=1_000_000)


def test_referer_allow_list():
    patterns = ["app.gohighlevel.com", "*.leadconnectorhq.com"]
    assert is_allowed_referer("https://app.gohighlevel.com/v2/location/abc", patterns)
    assert is_allowed_referer("https://app.leadconnectorhq.com/", patterns)
    assert is_allowed_referer("https://leadconnectorhq.com/", patterns)
    assert not is_allowed_referer("https://gohighlevel.com.evil.io/", patterns)
    assert not is_allowed_referer("https://evil.io/?next=app.gohighlevel.com", patterns)
    assert not is_allowed_referer("https://notleadconnectorhq.com/", patterns)
    assert not is_allowed_referer(None, patterns)


@pytest.mark.asyncio
async def test_entry_path_sets_handshake_cookie_for_allowed_referer(integration_client, monkeypatch):
    monkeypatch.setattr(settings, "DEV_MODE", False)
    allowed = await integration_client.get(
        "/?location_id=loc-1",
        headers={"Referer": "https://app.gohighlevel.com/v2/location/loc-1"},
    )
    assert allowed.status_code == 200
    cookie_header = allowed.headers.get("set-cookie", "")
    assert cookie_header.startswith(f"{settings.EMBED_COOKIE_NAME}=")
    cookie_value = cookie_header.split(";")[0].split("=", 1)[1].strip('"')
    assert verify_handshake_value(cookie_value)

    denied = await integration_client.get("/?location_id=loc-1", headers={"Referer": "https://evil.io/"})
    assert "set-cookie" not in denied.headers

    no_location = await integration_client.get("/", headers={"Referer": "https://app.gohighlevel.com/"})
    assert "set-cookie" not in no_location.headers


@pytest.mark.asyncio
async def test_embed_init_exchanges_handshake_for_session(integration_client, monkeypatch):
    monkeypatch.setattr(settings, "DEV_MODE", False)

    async def fake_validate_location(location_id):
        if location_id == "loc-bad":
            raise CrmError("Invalid location", 404)
        return LocationInfo(id=location_id, name="Acme Roofing")

    monkeypatch.setattr(embed_router, "validate_location", fake_validate_location)

    no_cookie = await integration_client.get("/embed/init?location_id=loc-7")
    assert no_cookie.status_code == 403

    expired = create_handshake_value(now_ms=1_000)
    stale = await integration_client.get(
        "/embed/init?location_id=loc-7",
        headers={"Cookie": f"{settings.EMBED_COOKIE_NAME}={expired}"},
    )
    assert stale.status_code == 403

    def cookie():
        return {"Cookie": f"{settings.EMBED_COOKIE_NAME}={create_handshake_value()}"}

    bad_location = await integration_client.get("/embed/init?location_id=loc-bad", headers=cookie())
    assert bad_location.status_code == 403

    first = await integration_client.get("/embed/init?location_id=loc-7", headers=cookie())
    assert first.status_code == 200
    first_body = first.json()
    assert token_shape(first_body["session_token"]) == SHAPE_OPAQUE
    assert first_body["user"]["username"] == "crm_loc-7"
    assert first_body["user"]["credits_balance"] == 0

    me = await integration_client.get("/auth/me", headers={"Authorization": f"Bearer {first_body['session_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == first_body["user"]["id"]

    second = await integration_client.get("/embed/init?location_id=loc-7", headers=cookie())
    assert second.json()["user"]["id"] == first_body["user"]["id"]
    replaced = await integration_client.get(
        "/auth/me", headers={"Authorization": f"Bearer {first_body['session_token']}"}
    )
    assert replaced.status_code == 401

    second_headers = {"Authorization": f"Bearer {second.json()['session_token']}"}
    logout = await integration_client.post("/embed/logout", headers=second_headers)
    assert logout.json() == {"success": True, "revoked": True}
    assert (await integration_client.get("/auth/me", headers=second_headers)).status_code == 401

    signed = {"Authorization": f"Bearer {create_session_token('someone')['token']}"}
    assert (await integration_client.post("/embed/logout", headers=signed)).status_code == 400


@pytest.mark.asyncio
async def test_dev_mode_skips_handshake(integration_client, monkeypatch):
    monkeypatch.setattr(settings, "DEV_MODE", True)

    async def fake_validate_location(location_id):
        return LocationInfo(id=location_id)

    monkeypatch.setattr(embed_router, "validate_location", fake_validate_location)
    resp = await integration_client.get("/embed/init?location_id=loc-dev")
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "crm_loc-dev"
