"""REST client for the record authority.

Only one call is needed: read a single record by type and id as the
current user. The record body is never inspected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from filegate.errors import UpstreamTimeoutError, UpstreamUnavailableError
from filegate.models.domain import Credential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordReadResult:
    """
    Result of a record read.

    Attributes:
        ok: True if the authority returned the record (2xx status)
        status: HTTP status code
        error_code: Authority error code (e.g. NOT_FOUND, INSUFFICIENT_ACCESS) if any
    """
    ok: bool
    status: int
    error_code: str | None = None


def _api_version_segment(api_version: str) -> str:
    v = api_version.strip()
    return v if v.startswith("v") else f"v{v}"


def record_url(credential: Credential, record_type: str, record_id: str) -> str:
    return (
        f"{credential.instance_url.rstrip('/')}/services/data/"
        f"{_api_version_segment(credential.api_version)}/sobjects/"
        f"{quote(record_type, safe='')}/{quote(record_id, safe='')}"
    )


class RecordAuthorityClient:
    """Reads records with the caller's own access token."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def read_record(
        self, credential: Credential, record_type: str, record_id: str
    ) -> RecordReadResult:
        """Read one record as the credential's user.

        Raises:
            UpstreamTimeoutError: The read timed out.
            UpstreamUnavailableError: The authority could not be reached.
        """
        url = record_url(credential, record_type, record_id)
        try:
            response = await self._http.get(
                url,
                params={"fields": "Id"},
                headers={
                    "Authorization": f"Bearer {credential.access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Record read timed out: {record_type}/{record_id}") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(f"Record authority unreachable: {e}") from e

        if response.is_success:
            return RecordReadResult(ok=True, status=response.status_code)

        return RecordReadResult(
            ok=False,
            status=response.status_code,
            error_code=self._error_code(response),
        )

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        # Errors come back as [{"errorCode": "...", "message": "..."}].
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            code = body[0].get("errorCode")
            return str(code) if code else None
        if isinstance(body, dict):
            code = body.get("errorCode") or body.get("error")
            return str(code) if code else None
        return None
