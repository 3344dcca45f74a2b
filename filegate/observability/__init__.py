"""Observability utilities (redaction, access logging)."""

from filegate.observability.forbidden_access_log import log_forbidden_request
from filegate.observability.redaction import is_secret_key, redact_text, sanitize

__all__ = [
    "is_secret_key",
    "log_forbidden_request",
    "redact_text",
    "sanitize",
]
