"""Access log line for refused downloads.

A 403 response body says only "Forbidden". The reason (which user asked
for which key, and which owning record the authority refused) is written
here instead, as one ``ACCESS_FORBIDDEN {json}`` line on the
``filegate.access`` logger. Every field goes through ``sanitize``.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import unquote

from starlette.requests import Request

from filegate.observability.redaction import sanitize

logger = logging.getLogger("filegate.access")

# Headers worth keeping for a refused download; everything else is noise.
_LOGGED_HEADERS = ("user-agent", "referer", "cookie", "authorization", "x-forwarded-for")


def forbidden_access_record(request: Request, detail: Any) -> dict[str, Any]:
    """Build the log-safe record for a refused request.

    ``client_ip`` is the peer as seen by the ASGI server; uvicorn already
    resolves trusted proxy headers into it. The raw forwarded chain is kept
    separately for reference.
    """
    headers = {name: request.headers[name] for name in _LOGGED_HEADERS if name in request.headers}
    failure = getattr(request.state, "authz_failure", None)
    return {
        "status_code": 403,
        "method": request.method,
        "path": request.url.path,
        "query": sanitize(unquote(request.url.query)),
        "client_ip": request.client.host if request.client else None,
        "forwarded_for": headers.pop("x-forwarded-for", None),
        "headers": sanitize(headers),
        "reason": sanitize(failure),
        "detail": sanitize(detail),
    }


async def log_forbidden_request(request: Request, detail: Any) -> None:
    try:
        record = forbidden_access_record(request, detail)
        logger.warning("ACCESS_FORBIDDEN %s", json.dumps(record, ensure_ascii=False, default=str))
    except Exception:
        logger.exception("Failed to log refused download")
