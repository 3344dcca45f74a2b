"""StrEnum definitions for type-safe constants."""

from enum import StrEnum


class AuthState(StrEnum):
    """OAuth delegation state of a session."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class PermissionDecision(StrEnum):
    """Outcome of a record read check."""

    ALLOWED = "allowed"
    DENIED = "denied"


class OwnerMetadataKey(StrEnum):
    """User-metadata keys stamped on stored objects by the uploader."""

    LINKED_ENTITY_ID = "sfdc-linked-entity-id"
    LINKED_ENTITY_API_NAME = "sfdc-linked-entity-api-name"
    OWNER_ID = "sfdc-owner-id"
