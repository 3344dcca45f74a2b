"""OAuth2 authorization-code client for the identity provider.

Builds the authorization URL the browser is redirected to and exchanges the
callback code for an access token, the record-authority instance URL and
the user identity.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode, urlparse

import httpx

from filegate.errors import (
    ProviderExchangeError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from filegate.models.domain import TokenGrant
from filegate.observability.redaction import sanitize

logger = logging.getLogger(__name__)


def _parse_identity_url(identity_url: str) -> tuple[str, str | None]:
    """Split an identity URL (``.../id/<orgId>/<userId>``) into (user_id, org_id)."""
    segments = [s for s in urlparse(identity_url).path.split("/") if s]
    if not segments:
        raise ValueError(f"identity URL has no path: {identity_url!r}")
    user_id = segments[-1]
    org_id = segments[-2] if len(segments) >= 2 and segments[-2] != "id" else None
    return user_id, org_id


class IdentityProviderClient:
    """Single fixed OAuth client against one identity provider."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        authorize_endpoint: str,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scope: str = "api",
    ) -> None:
        self._http = http
        self.authorize_endpoint = authorize_endpoint
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scope = scope

    def authorization_url(self) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for a token grant.

        Codes are single use; a replayed code is rejected by the provider
        and surfaces here as ``ProviderExchangeError``.

        Raises:
            ProviderExchangeError: Provider rejected the code or answered malformed data.
            UpstreamTimeoutError: The token request timed out.
            UpstreamUnavailableError: The provider could not be reached.
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "redirect_uri": self.redirect_uri,
        }
        try:
            response = await self._http.post(
                self.token_endpoint,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"Token exchange timed out: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(f"Token endpoint unreachable: {e}") from e

        payload = self._json_or_none(response)

        if response.status_code >= 500:
            raise UpstreamUnavailableError(
                f"Token endpoint answered HTTP {response.status_code}: {sanitize(payload)}"
            )
        if not response.is_success:
            raise ProviderExchangeError(
                f"Token exchange rejected with HTTP {response.status_code}",
                provider_error=sanitize(payload),
            )
        if not isinstance(payload, dict):
            raise ProviderExchangeError("Token response is not a JSON object")

        access_token = payload.get("access_token")
        instance_url = payload.get("instance_url")
        identity_url = payload.get("id")
        if not access_token or not instance_url or not identity_url:
            raise ProviderExchangeError(
                "Token response is missing access_token, instance_url or id",
                provider_error=sanitize(payload),
            )

        try:
            user_id, org_id = _parse_identity_url(str(identity_url))
        except ValueError as e:
            raise ProviderExchangeError(str(e)) from e

        return TokenGrant(
            access_token=str(access_token),
            instance_url=str(instance_url).rstrip("/"),
            user_id=user_id,
            organization_id=org_id,
        )

    @staticmethod
    def _json_or_none(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None
