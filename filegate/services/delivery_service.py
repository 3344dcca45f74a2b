"""Delivery pipeline.

resolve_metadata -> (permission check, done by the caller) -> headers -> stream.

The body is copied from the store to the client in bounded chunks; the
whole object is never held in memory. The store stream is closed when the
copy ends, fails, or the client goes away.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from filegate.models.domain import ObjectMetadata, ObjectReference

if TYPE_CHECKING:
    from filegate.clients.object_store import ObjectStoreClient

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Characters allowed verbatim inside the quoted filename parameter.
_UNSAFE_FALLBACK_RE = re.compile(r'[^\x20-\x7e]|["\\/]')


def content_disposition(file_name: str) -> str:
    """Build an attachment Content-Disposition header value.

    The quoted ``filename`` is restricted to printable ASCII without quotes,
    backslashes or path separators, so a crafted key cannot break out of
    the header. Names needing more get an RFC 5987 ``filename*`` as well.
    """
    fallback = _UNSAFE_FALLBACK_RE.sub("_", file_name).strip() or "download"
    value = f'attachment; filename="{fallback}"'
    if fallback != file_name:
        value += f"; filename*=UTF-8''{quote(file_name, safe='')}"
    return value


class ObjectBodyStream:
    """Iterator over a store body in chunks of at most ``chunk_size`` bytes.

    ``close`` is idempotent and safe to call from another thread than the
    one iterating.
    """

    def __init__(self, body: Any, *, key: str, chunk_size: int) -> None:
        self._body = body
        self.key = key
        self.chunk_size = chunk_size
        self.bytes_sent = 0
        self._closed = False
        self._lock = threading.Lock()

    def __iter__(self) -> Iterator[bytes]:
        try:
            while not self._closed:
                chunk = self._body.read(self.chunk_size)
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._body.close()
        except Exception:
            logger.warning("Failed to close store stream for %s", self.key, exc_info=True)
        logger.debug("Closed store stream for %s after %d bytes", self.key, self.bytes_sent)

    @property
    def closed(self) -> bool:
        return self._closed


class DeliveryService:
    """Fetches metadata and streams object bodies from the store."""

    def __init__(self, object_store: "ObjectStoreClient", *, chunk_size: int = 64 * 1024) -> None:
        self.object_store = object_store
        self.chunk_size = chunk_size

    async def resolve_metadata(self, key: str) -> ObjectMetadata:
        """Metadata-only fetch; raises ``ObjectNotFoundError`` for unknown keys."""
        return await asyncio.to_thread(self.object_store.head, key)

    def build_headers(self, reference: ObjectReference, metadata: ObjectMetadata) -> dict[str, str]:
        return {
            "Content-Disposition": content_disposition(reference.display_file_name),
            "Content-Type": metadata.content_type or DEFAULT_CONTENT_TYPE,
            "Content-Length": str(metadata.content_length),
        }

    async def open_stream(self, key: str, *, etag: str | None = None) -> ObjectBodyStream:
        """Open the body, pinned to ``etag`` when the metadata read returned one."""
        body = await asyncio.to_thread(self.object_store.open_body, key, etag=etag)
        return ObjectBodyStream(body, key=key, chunk_size=self.chunk_size)
