"""Scrubbing of OAuth and AWS credentials before anything reaches a log.

Three kinds of material flow through the gateway and must never be logged
verbatim: record-authority access tokens (``00D...!...`` session ids sent as
``Bearer`` headers), single-use authorization codes arriving on the callback
query string, and AWS credentials (access key ids, presigned URL signatures
on object URLs). Provider error payloads, request headers and URLs are
passed through ``sanitize`` / ``redact_text`` first.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

REDACTED = "[REDACTED]"
_ELLIPSIS = "…"
_TRUNCATED = "…(truncated)"
_MAX_ITEMS = 50

# Dict keys, header names and form fields whose value is always secret.
_SECRET_KEY_RE = re.compile(
    r"^code$|(^|[_-])(password|secret|token|cookie|authorization|signature|"
    r"access[_-]?key|client[_-]?secret|refresh[_-]?token|session[_-]?id)($|[_-])",
    flags=re.IGNORECASE,
)

# Query/form parameters: the name is kept, only the value is replaced.
_PARAM_RE = re.compile(
    r"\b(code|access_token|refresh_token|client_secret|token|"
    r"X-Amz-Signature|X-Amz-Credential|X-Amz-Security-Token)=[^&\s\"']+",
    flags=re.IGNORECASE,
)

# Free-standing credential shapes.
_TOKEN_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bBearer\s+[A-Za-z0-9._!\-]+", flags=re.IGNORECASE),
    # Org id (15/18 chars), '!', opaque tail
    re.compile(r"\b00D[A-Za-z0-9]{12,15}![A-Za-z0-9._\-]+"),
    re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b"),
)


def is_secret_key(key: str) -> bool:
    return bool(_SECRET_KEY_RE.search(key))


def redact_text(text: str, *, max_chars: int = 4000) -> str:
    """Replace credential substrings in ``text``; ``max_chars=0`` disables truncation."""
    if text is None:
        return text

    out = _PARAM_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", text)
    for rx in _TOKEN_RES:
        out = rx.sub(REDACTED, out)

    if max_chars and len(out) > max_chars:
        out = out[:max_chars] + _TRUNCATED
    return out


def sanitize(obj: Any, *, max_depth: int = 6, max_chars: int = 4000) -> Any:
    """Return a log-safe copy of ``obj``.

    Mappings keep their keys but lose the values of secret-looking keys,
    strings are scanned with ``redact_text``, pydantic models are dumped
    first, and depth and list length are bounded.
    """
    if max_depth <= 0:
        return _ELLIPSIS
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, bytes):
        return f"<bytes:{len(obj)}>"
    if isinstance(obj, str):
        return redact_text(obj, max_chars=max_chars)
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")

    child = {"max_depth": max_depth - 1, "max_chars": max_chars}
    if isinstance(obj, Mapping):
        return {
            str(k): REDACTED if is_secret_key(str(k)) else sanitize(v, **child)
            for k, v in obj.items()
        }
    if isinstance(obj, Sequence):
        items = [sanitize(v, **child) for v in list(obj)[:_MAX_ITEMS]]
        if len(obj) > _MAX_ITEMS:
            items.append(_ELLIPSIS)
        return items

    try:
        return redact_text(str(obj), max_chars=max_chars)
    except Exception:
        return "<unprintable>"
