"""Edge check for embedded (iframe) entry.

Requests to an entry path carrying ``location_id`` whose Referer host is on
the allow-list get a short-lived signed ``embed_verified`` cookie. The
``/embed/init`` handler requires that cookie and never inspects the Referer
itself.
"""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from config import settings
from services.embed_session import create_handshake_value, is_allowed_referer

logger = logging.getLogger(__name__)


class EmbedRefererMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        if request.method != "GET" or request.url.path not in settings.EMBED_ENTRY_PATHS:
            return response
        if not request.query_params.get("location_id"):
            return response

        if settings.DEV_MODE or is_allowed_referer(request.headers.get("referer")):
            response.set_cookie(
                settings.EMBED_COOKIE_NAME,
                create_handshake_value(),
                max_age=settings.EMBED_COOKIE_MAX_AGE_SECONDS,
                path="/",
                secure=True,
                httponly=True,
                samesite="none",
            )
        else:
            logger.info("Embedded entry without an allowed referer: %s", request.headers.get("referer"))
        return response
