"""Pydantic domain models.

These models flow between the session store, the OAuth flow, the
permission check and the delivery pipeline. None of them is ever serialized
into a response body as-is; credentials in particular stay server-side.
"""

from datetime import datetime

from filegate.enums import AuthState
from filegate.models.base import JsonModel, SnapshotModel


class SessionData(SnapshotModel):
    """Server-side session snapshot keyed by an opaque cookie token.

    ``access_token`` and ``instance_url`` are either both set or both unset.
    """

    token: str
    pending_redirect_url: str | None = None
    access_token: str | None = None
    instance_url: str | None = None
    user_id: str | None = None
    created_at: datetime
    expires_at: datetime

    @property
    def auth_state(self) -> AuthState:
        if self.access_token and self.instance_url:
            return AuthState.AUTHENTICATED
        return AuthState.UNAUTHENTICATED

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"SessionData(token='{self.token[:6]}…', state={self.auth_state}, "
            f"user={self.user_id}, expires_at={self.expires_at.isoformat()})"
        )


class Credential(SnapshotModel):
    """Record-authority credential derived from an authenticated session."""

    access_token: str
    instance_url: str
    api_version: str

    def __repr__(self) -> str:
        return f"Credential(instance_url='{self.instance_url}', api_version='{self.api_version}')"


class TokenGrant(SnapshotModel):
    """Result of a successful authorization-code exchange."""

    access_token: str
    instance_url: str
    user_id: str
    organization_id: str | None = None

    def __repr__(self) -> str:
        return f"TokenGrant(instance_url='{self.instance_url}', user_id='{self.user_id}')"


class ObjectMetadata(SnapshotModel):
    """Store metadata fetched with a metadata-only request.

    Owner fields are optional here; their presence is validated when the
    object reference is extracted.
    """

    key: str
    content_type: str | None = None
    content_length: int
    etag: str | None = None
    owner_record_type: str | None = None
    owner_record_id: str | None = None
    user_metadata: dict[str, str] = {}


class ObjectReference(SnapshotModel):
    """Store key resolved to its owning record."""

    key: str
    owner_record_type: str
    owner_record_id: str
    display_file_name: str


class HealthResponse(JsonModel):
    """Response model for the health endpoint."""

    status: str
    active_sessions: int
