"""Download and OAuth callback endpoints.

Routers handle HTTP concerns only - no business logic.
Sequencing is: session -> (OAuth start | metadata -> permission -> stream).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from filegate.errors import (
    GatewayError,
    PermissionDeniedError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from filegate.observability.forbidden_access_log import log_forbidden_request
from filegate.observability.redaction import redact_text
from filegate.services.permission_service import extract_object_reference

if TYPE_CHECKING:
    from filegate.services.delivery_service import DeliveryService
    from filegate.services.oauth_service import OAuthFlow
    from filegate.services.permission_service import PermissionService
    from filegate.services.session_service import SessionManager

logger = logging.getLogger(__name__)


def parse_store_key(object_url: str | None) -> str:
    """Extract the store key from a full object URL.

    The key is the URL path without its leading slash, percent-decoded.

    Raises:
        ValueError: If the URL is missing, not absolute, or has an empty path.
    """
    if not object_url or not object_url.strip():
        raise ValueError("Missing url parameter")
    parsed = urlparse(object_url.strip())
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("url parameter must be an absolute URL")
    key = unquote(parsed.path)[1:]
    if not key:
        raise ValueError("url parameter has no object path")
    return key


def _to_http_exception(exc: GatewayError) -> HTTPException:
    if isinstance(exc, (UpstreamTimeoutError, UpstreamUnavailableError)):
        logger.warning("Upstream failure: %s", exc.message)
    elif exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.message)
    else:
        logger.info("%s: %s", type(exc).__name__, exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.public_detail)


def create_download_router(
    *,
    session_manager: "SessionManager",
    oauth_flow: "OAuthFlow",
    permission_service: "PermissionService",
    delivery_service: "DeliveryService",
    api_version: str,
) -> APIRouter:
    """Create the gateway router with injected services.

    Args:
        session_manager: Server-side session lifecycle.
        oauth_flow: OAuth delegation state machine.
        permission_service: Record-authority permission check.
        delivery_service: Object metadata and body streaming.
        api_version: Record authority API version for derived credentials.

    Returns:
        APIRouter with /auth/callback and /download configured
    """
    router = APIRouter(tags=["download"])

    @router.get("/auth/callback")
    async def auth_callback(request: Request, code: str | None = Query(default=None)):
        """Login callback (only called by the identity provider).

        Returns:
            302 to the URL originally requested before authentication

        Raises:
            HTTPException: 500 for a missing code, missing pending redirect or
                rejected exchange; 502/504 when the provider is unavailable
        """
        session, _ = session_manager.get_or_create(request.cookies)
        try:
            redirect_url, authenticated = await oauth_flow.finish(session, code)
        except GatewayError as e:
            raise _to_http_exception(e)

        # The session moved to a fresh token on login; the old cookie is dead.
        response = RedirectResponse(redirect_url, status_code=302)
        session_manager.apply_cookie(response, session_manager.cookie_value(authenticated))
        return response

    @router.get("/download")
    async def download(request: Request, url: str | None = Query(default=None)):
        """Check permissions and stream the requested object.

        Unauthenticated callers are redirected to the identity provider and
        come back here after the callback.

        Raises:
            HTTPException: 400 bad url, 403 denied, 404 not found, 409 object
                replaced mid-request, 500 inconsistent metadata, 502/504 upstream
                failures
        """
        session, new_cookie = session_manager.get_or_create(request.cookies)
        credential = session_manager.credential(session, api_version)
        if credential is None:
            authorization_url = oauth_flow.start(session, str(request.url))
            response = RedirectResponse(authorization_url, status_code=302)
            session_manager.apply_cookie(response, new_cookie)
            return response

        session_manager.touch(session)

        try:
            key = parse_store_key(url)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        logger.info(
            "User %s attempting to download %s", session.user_id, redact_text(url, max_chars=0)
        )

        try:
            metadata = await delivery_service.resolve_metadata(key)
            reference = extract_object_reference(metadata, key)
            try:
                await permission_service.ensure_readable(credential, reference)
            except PermissionDeniedError as e:
                request.state.authz_failure = {
                    "user_id": session.user_id,
                    "record_type": reference.owner_record_type,
                    "record_id": reference.owner_record_id,
                    "key": key,
                }
                await log_forbidden_request(request, e.public_detail)
                if e.credential_rejected:
                    # Expired or revoked token: the next request logs in again.
                    session_manager.drop_credential(session)
                raise
            headers = delivery_service.build_headers(reference, metadata)
            stream = await delivery_service.open_stream(key, etag=metadata.etag)
        except GatewayError as e:
            raise _to_http_exception(e)

        response = StreamingResponse(
            stream,
            headers=headers,
            background=BackgroundTask(stream.close),
        )
        session_manager.apply_cookie(response, session_manager.cookie_value(session))
        return response

    return router
