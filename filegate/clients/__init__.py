"""Clients for the external collaborators (identity provider, record authority, object store)."""

from .identity_provider import IdentityProviderClient
from .object_store import ObjectStoreClient, create_s3_client
from .record_authority import RecordAuthorityClient, RecordReadResult

__all__ = [
    "IdentityProviderClient",
    "ObjectStoreClient",
    "RecordAuthorityClient",
    "RecordReadResult",
    "create_s3_client",
]
