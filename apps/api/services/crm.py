"""CRM (sub-account) API client: location validation and social planner calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class CrmError(Exception):
    """CRM call failed; ``message`` is safe to show to the user."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class LocationInfo:
    id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    company_id: str = ""


@dataclass
class BusinessInfo:
    name: str = ""
    email: str = ""
    phone: str = ""


@dataclass
class SubaccountValidation:
    location: LocationInfo
    business: Optional[BusinessInfo] = None

    @property
    def display_name(self) -> Optional[str]:
        return (self.business.name if self.business else "") or self.location.name or None

    @property
    def display_email(self) -> Optional[str]:
        return (self.business.email if self.business else "") or self.location.email or None

    @property
    def display_phone(self) -> Optional[str]:
        return (self.business.phone if self.business else "") or self.location.phone or None


@dataclass
class SocialAccount:
    id: str
    name: str
    platform: str
    avatar: Optional[str] = None
    type: Optional[str] = None


@dataclass
class SocialPostRequest:
    account_ids: List[str]
    summary: str
    media: List[str] = field(default_factory=list)
    scheduled_date: Optional[str] = None
    crm_user_id: Optional[str] = None


def _headers(api_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Version": settings.CRM_API_VERSION,
        "Accept": "application/json",
    }


def _url(path: str) -> str:
    return f"{settings.CRM_API_BASE.rstrip('/')}/{path.lstrip('/')}"


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _error_detail(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or fallback)
    return fallback


def _json_body(response: httpx.Response, message: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        logger.warning("CRM answered %s with a non-JSON body: %.200s", response.status_code, response.text)
        raise CrmError(message, response.status_code) from exc


def _location_from(body: Any) -> Dict[str, Any]:
    if isinstance(body, dict):
        location = body.get("location") or body
        if isinstance(location, dict):
            return location
    return {}


async def _get(api_key: str, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
    async with _http_client(settings.CRM_REQUEST_TIMEOUT_SECONDS) as client:
        return await client.get(_url(path), headers=_headers(api_key), params=params)


async def validate_location(location_id: str) -> LocationInfo:
    """Check an embedding location with the agency key (and agency ownership when configured)."""
    api_key = settings.CRM_AGENCY_API_KEY.strip()
    if not api_key:
        logger.error("CRM_AGENCY_API_KEY is not set; cannot validate locations")
        raise CrmError("Server configuration error")

    try:
        response = await _get(api_key, f"/locations/{location_id}")
    except httpx.HTTPError as exc:
        logger.warning("CRM location validation failed for %s: %s", location_id, exc)
        raise CrmError("Failed to validate location") from exc

    if response.status_code in (401, 404):
        raise CrmError("Invalid location", response.status_code)
    if response.is_error:
        logger.warning("CRM location validation returned %s for %s", response.status_code, location_id)
        raise CrmError("Failed to validate location", response.status_code)

    location = _location_from(_json_body(response, "Failed to validate location"))
    if not location.get("id"):
        raise CrmError("Location not found")
    company_id = settings.CRM_COMPANY_ID.strip()
    if company_id and location.get("companyId") != company_id:
        raise CrmError("Location does not belong to this agency")

    return LocationInfo(
        id=str(location["id"]),
        name=location.get("name") or "",
        email=location.get("email") or "",
        phone=location.get("phone") or "",
        company_id=location.get("companyId") or "",
    )


_SUBACCOUNT_ERRORS = {
    401: 'Invalid API key or insufficient permissions. Make sure the "locations.readonly" scope is enabled.',
    403: "API key does not have access to this location. Check your Private Integration scopes.",
    404: "Location not found. Please verify your Location ID.",
    422: "Invalid Location ID format.",
}


async def validate_subaccount_key(api_key: str, location_id: str) -> SubaccountValidation:
    """Verify a sub-account key by reading its location; business info is best-effort."""
    try:
        response = await _get(api_key, f"/locations/{location_id}")
    except httpx.HTTPError as exc:
        logger.warning("CRM sub-account validation error: %s", exc)
        raise CrmError("Failed to validate API key. Please try again.") from exc

    if response.status_code in _SUBACCOUNT_ERRORS:
        raise CrmError(_SUBACCOUNT_ERRORS[response.status_code], response.status_code)
    if response.is_error:
        raise CrmError("Failed to validate API key. Please try again.", response.status_code)

    data = _location_from(_json_body(response, "Failed to validate API key. Please try again."))
    if not data.get("id"):
        raise CrmError("Could not retrieve location info")
    location = LocationInfo(
        id=str(data["id"]),
        name=data.get("name") or "",
        email=data.get("email") or "",
        phone=data.get("phone") or "",
    )

    business: Optional[BusinessInfo] = None
    try:
        business_response = await _get(api_key, "/businesses/", params={"locationId": location_id})
        business_response.raise_for_status()
        businesses = business_response.json().get("businesses") or []
        if businesses:
            first = businesses[0]
            business = BusinessInfo(
                name=first.get("name") or "",
                email=first.get("email") or "",
                phone=first.get("phone") or "",
            )
    except (httpx.HTTPError, ValueError, AttributeError) as exc:
        logger.warning("Could not fetch CRM business info (scope may not be granted): %s", exc)

    return SubaccountValidation(location=location, business=business)


async def get_connected_accounts(api_key: str, location_id: str) -> List[SocialAccount]:
    try:
        response = await _get(api_key, f"/social-media-posting/{location_id}/accounts")
    except httpx.HTTPError as exc:
        logger.warning("Failed to fetch connected accounts: %s", exc)
        raise CrmError("Failed to fetch connected social media accounts.") from exc

    if response.status_code == 401:
        raise CrmError("Unauthorized. Check your API key and socialplanner/account.readonly scope.", 401)
    if response.status_code == 403:
        raise CrmError("Access denied. The socialplanner/account.readonly scope may not be enabled.", 403)
    if response.is_error:
        raise CrmError("Failed to fetch connected social media accounts.", response.status_code)

    body = _json_body(response, "Failed to fetch connected social media accounts.")
    if not isinstance(body, dict):
        body = {}
    raw_accounts = (body.get("results") or {}).get("accounts") or body.get("accounts") or body.get("data") or []
    accounts: List[SocialAccount] = []
    for raw in raw_accounts if isinstance(raw_accounts, list) else []:
        meta = raw.get("meta") or {}
        accounts.append(
            SocialAccount(
                id=raw.get("id") or raw.get("_id"),
                name=raw.get("name") or raw.get("pageName") or raw.get("accountName") or meta.get("name") or "Unknown Account",
                platform=str(raw.get("platform") or raw.get("type") or raw.get("channel") or "unknown").lower(),
                avatar=raw.get("avatar") or raw.get("profilePicture") or raw.get("thumbnail") or meta.get("picture"),
                type=raw.get("type") or raw.get("accountType"),
            )
        )
    return accounts


async def fetch_crm_user_id(api_key: str, location_id: str) -> Optional[str]:
    """First CRM user of the location; post creation needs one."""
    try:
        response = await _get(api_key, "/users/", params={"locationId": location_id})
        response.raise_for_status()
        body = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Failed to fetch CRM user id: %s", exc)
        return None

    users = body
    if isinstance(body, dict):
        users = body.get("users") or (body.get("results") or {}).get("users") or []
    if isinstance(users, list) and users:
        return users[0].get("id") or users[0].get("_id")
    return None


async def create_social_post(api_key: str, location_id: str, post: SocialPostRequest) -> Optional[str]:
    """Create (or schedule) a social planner post. Returns the post id when reported."""
    crm_user_id = post.crm_user_id or await fetch_crm_user_id(api_key, location_id)
    body: Dict[str, Any] = {
        "accountIds": post.account_ids,
        "summary": post.summary,
        "media": post.media,
        "type": "post",
    }
    if crm_user_id:
        body["userId"] = crm_user_id
    if post.scheduled_date:
        body["status"] = "scheduled"
        body["scheduleDate"] = post.scheduled_date

    try:
        async with _http_client(settings.CRM_REQUEST_TIMEOUT_SECONDS) as client:
            response = await client.post(
                _url(f"/social-media-posting/{location_id}/posts"),
                headers=_headers(api_key),
                json=body,
            )
    except httpx.HTTPError as exc:
        logger.warning("Failed to create social post: %s", exc)
        raise CrmError("Failed to create social media post. Please try again.") from exc

    if response.status_code == 401:
        raise CrmError("Unauthorized. Check your API key and socialplanner/post.write scope.", 401)
    if response.status_code == 400:
        raise CrmError(f"Bad request: {_error_detail(response, 'Invalid request.')}", 400)
    if response.status_code == 422:
        raise CrmError(f"Validation error: {_error_detail(response, 'Validation failed.')}", 422)
    if response.is_error:
        raise CrmError("Failed to create social media post. Please try again.", response.status_code)

    try:
        data = response.json() or {}
    except ValueError:
        return None
    results = data.get("results") or {}
    return data.get("id") or data.get("postId") or data.get("_id") or results.get("id") or results.get("postId")


async def upload_media_from_url(api_key: str, location_id: str, video_url: str) -> str:
    """Download a finished video and re-host it in CRM media storage. Returns the hosted URL."""
    try:
        async with _http_client(settings.CRM_MEDIA_TIMEOUT_SECONDS) as client:
            source = await client.get(video_url, follow_redirects=True)
            source.raise_for_status()
            content_type = source.headers.get("content-type") or "video/mp4"
            response = await client.post(
                _url("/medias/upload-file"),
                headers=_headers(api_key),
                params={"locationId": location_id},
                data={"hosted": "true", "fileProcessingType": "video"},
                files={"file": (f"video-{int(time.time() * 1000)}.mp4", source.content, content_type)},
            )
    except httpx.HTTPError as exc:
        logger.warning("Failed to upload media to CRM: %s", exc)
        raise CrmError("Failed to upload video to CRM media storage.") from exc

    if response.status_code == 401:
        raise CrmError("Unauthorized. Check your API key and medias.write scope.", 401)
    if response.is_error:
        raise CrmError("Failed to upload video to CRM media storage.", response.status_code)

    data = _json_body(response, "Failed to upload video to CRM media storage.")
    uploaded_url = (data.get("url") or data.get("fileUrl")) if isinstance(data, dict) else None
    if not uploaded_url:
        raise CrmError("Upload succeeded but no URL was returned.")
    return uploaded_url
