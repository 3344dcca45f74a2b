"""Logging setup helpers and uvicorn access-log filters.

Applied from both entrypoints (`filegate` / `python -m filegate.main` and
`uvicorn filegate.asgi:app`).
"""

from __future__ import annotations

import logging
import sys

from filegate.observability.redaction import redact_text

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# SDK loggers that are chatty at INFO (credential lookup, connection pools).
_QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer", "httpx", "httpcore")

# Uvicorn formats access lines as
#   '%s - "%s %s HTTP/%s" %d' % (client_addr, method, full_path, http_version, status)
_PATH_ARG = 2


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging to stdout.

    Safe to call more than once; later calls only change the level.
    """
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger().setLevel(level.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _access_path(record: logging.LogRecord) -> str | None:
    args = record.args
    if isinstance(args, tuple) and len(args) > _PATH_ARG:
        return str(args[_PATH_ARG])
    return None


class SuppressHealthCheckAccessLog(logging.Filter):
    """Drop access lines for `/health` checks."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        path = _access_path(record)
        if path is not None:
            return path.split("?", 1)[0] != "/health"
        message = record.getMessage() if not record.args else str(record.msg)
        return '"GET /health ' not in message and '"HEAD /health ' not in message


class RedactOAuthParamsAccessLog(logging.Filter):
    """Scrub authorization codes and tokens from access-line paths.

    The provider callback arrives as ``/auth/callback?code=...``; the code is
    single use but still must not be written to logs.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (filter)
        path = _access_path(record)
        if path is not None:
            args = list(record.args)  # type: ignore[arg-type]
            args[_PATH_ARG] = redact_text(path, max_chars=0)
            record.args = tuple(args)
        elif isinstance(record.msg, str) and not record.args:
            record.msg = redact_text(record.msg, max_chars=0)
        return True


def install_uvicorn_access_log_filters() -> None:
    """Attach the access filters to ``uvicorn.access`` once."""
    access_logger = logging.getLogger("uvicorn.access")
    present = {type(f) for f in access_logger.filters}
    for filter_cls in (SuppressHealthCheckAccessLog, RedactOAuthParamsAccessLog):
        if filter_cls not in present:
            access_logger.addFilter(filter_cls())
