"""Gateway error hierarchy.

Every failure is terminal for the current request. Each error carries the
HTTP status the router maps it to and a generic public ``detail`` that never
contains provider internals, tokens or object existence hints.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for request-terminating gateway failures."""

    status_code: int = 500
    public_detail: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_detail)
        self.message = message or self.public_detail


class ConfigMissingError(GatewayError):
    """Raised at startup when required configuration is absent."""

    public_detail = "Missing required configuration"

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(
            "Missing required configuration: " + ", ".join(sorted(self.missing))
        )


class AuthCodeMissingError(GatewayError):
    """Raised when the OAuth callback carries no authorization code."""

    public_detail = "Failed to get authorization code from server callback."


class PendingRedirectMissingError(GatewayError):
    """Raised when a callback arrives for a session that never started the flow."""

    public_detail = "Failed to retrieve download URL."


class ProviderExchangeError(GatewayError):
    """Raised when the identity provider rejects or fails the code exchange."""

    public_detail = "Failed to complete authentication."

    def __init__(self, message: str, *, provider_error: object | None = None) -> None:
        super().__init__(message)
        self.provider_error = provider_error


class ObjectNotFoundError(GatewayError):
    """Raised when the requested key does not exist in the object store."""

    status_code = 404
    public_detail = "Not found"


class MetadataMissingError(GatewayError):
    """Raised when stored object metadata lacks the owning record fields."""

    public_detail = "Internal server error"


class KeyMismatchError(GatewayError):
    """Raised when an object key does not start with its owner record id."""

    public_detail = "Internal server error"


class PermissionDeniedError(GatewayError):
    """Raised when the record authority refuses the owning record read.

    ``credential_rejected`` is set when the authority refused the access
    token itself (expired or revoked) rather than the record.
    """

    status_code = 403
    public_detail = "Forbidden"

    def __init__(self, message: str | None = None, *, credential_rejected: bool = False) -> None:
        super().__init__(message)
        self.credential_rejected = credential_rejected


class ObjectChangedError(GatewayError):
    """Raised when the object was replaced between the metadata read and the body read."""

    status_code = 409
    public_detail = "Object changed during download, retry the request"


class UpstreamTimeoutError(GatewayError):
    """Raised when an outbound call exceeds its timeout."""

    status_code = 504
    public_detail = "Upstream timeout"


class UpstreamUnavailableError(GatewayError):
    """Raised when a remote dependency is unreachable or answers with a server error."""

    status_code = 502
    public_detail = "Upstream unavailable"
