"""Permission check.

Maps a stored object to its owning record and asks the record authority
whether the current identity can read that record. A successful read is
the only "allowed" signal; the gateway evaluates no policy of its own and
caches nothing.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from filegate.enums import PermissionDecision
from filegate.errors import (
    KeyMismatchError,
    MetadataMissingError,
    PermissionDeniedError,
)
from filegate.models.domain import Credential, ObjectMetadata, ObjectReference

if TYPE_CHECKING:
    from filegate.clients.record_authority import RecordAuthorityClient, RecordReadResult

logger = logging.getLogger(__name__)

_RECORD_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,79}$")
_RECORD_ID_RE = re.compile(r"^[A-Za-z0-9]{1,64}$")


def extract_object_reference(metadata: ObjectMetadata, key: str) -> ObjectReference:
    """Resolve ``key`` to its owning record using the store metadata.

    The key layout is ``<ownerRecordId>/<file name>``; the file name shown
    to the user is what follows the first segment.

    Raises:
        MetadataMissingError: Owner record type or id is absent.
        KeyMismatchError: ``key`` does not start with ``<ownerRecordId>/``.
    """
    record_type = (metadata.owner_record_type or "").strip()
    record_id = (metadata.owner_record_id or "").strip()
    if not record_type or not record_id:
        raise MetadataMissingError(f"Object {key!r} has no owning record metadata")

    prefix = f"{record_id}/"
    if not key.startswith(prefix):
        raise KeyMismatchError(f"Object key {key!r} does not start with owner id {record_id!r}")

    display_file_name = key[len(prefix):]
    if not display_file_name:
        raise KeyMismatchError(f"Object key {key!r} has no file name after owner id")

    return ObjectReference(
        key=key,
        owner_record_type=record_type,
        owner_record_id=record_id,
        display_file_name=display_file_name,
    )


class PermissionService:
    """Delegates read permission to the record authority."""

    def __init__(self, record_authority: "RecordAuthorityClient") -> None:
        self.record_authority = record_authority

    async def check_readable(
        self, credential: Credential, record_type: str, record_id: str
    ) -> PermissionDecision:
        """Read the record as the credential's user.

        Any non-success answer (not found, forbidden, expired token, server
        error) is a denial. Timeouts and unreachable authorities propagate
        as upstream errors.
        """
        decision, _ = await self._read(credential, record_type, record_id)
        return decision

    async def ensure_readable(self, credential: Credential, reference: ObjectReference) -> None:
        """Raise ``PermissionDeniedError`` unless the owning record is readable.

        A 401 from the authority marks the error ``credential_rejected``.
        """
        decision, result = await self._read(
            credential, reference.owner_record_type, reference.owner_record_id
        )
        if decision is not PermissionDecision.ALLOWED:
            raise PermissionDeniedError(
                f"Read denied on {reference.owner_record_type}/{reference.owner_record_id}",
                credential_rejected=result is not None and result.status == 401,
            )

    async def _read(
        self, credential: Credential, record_type: str, record_id: str
    ) -> tuple[PermissionDecision, RecordReadResult | None]:
        if not _RECORD_TYPE_RE.match(record_type) or not _RECORD_ID_RE.match(record_id):
            logger.warning(
                "Refusing record read with malformed identifiers (type=%r id=%r)",
                record_type,
                record_id,
            )
            return PermissionDecision.DENIED, None

        result = await self.record_authority.read_record(credential, record_type, record_id)
        if result.ok:
            return PermissionDecision.ALLOWED, result

        logger.info(
            "Record read denied for %s/%s (status=%s error=%s)",
            record_type,
            record_id,
            result.status,
            result.error_code,
        )
        return PermissionDecision.DENIED, result
