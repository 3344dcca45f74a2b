"""Business logic services package."""

from .delivery_service import DeliveryService, ObjectBodyStream, content_disposition
from .oauth_service import OAuthFlow
from .permission_service import PermissionService, extract_object_reference
from .session_service import (
    InMemorySessionStore,
    SessionManager,
    SessionStore,
    sign_token,
    unsign_cookie,
)

__all__ = [
    "DeliveryService",
    "InMemorySessionStore",
    "OAuthFlow",
    "ObjectBodyStream",
    "PermissionService",
    "SessionManager",
    "SessionStore",
    "content_disposition",
    "extract_object_reference",
    "sign_token",
    "unsign_cookie",
]
