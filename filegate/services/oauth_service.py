"""OAuth delegation flow.

A two-message state machine keyed by session:

    UNAUTHENTICATED --start--> (pending redirect stored, browser sent to provider)
                    --finish(code)--> AUTHENTICATED (redirect to pending URL)

The continuation between the two HTTP requests is the session's
pending-redirect field. A failed finish leaves the session untouched, so a
retried callback with a fresh code can still complete.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from filegate.enums import AuthState
from filegate.errors import (
    AuthCodeMissingError,
    PendingRedirectMissingError,
    ProviderExchangeError,
)
from filegate.models.domain import SessionData

if TYPE_CHECKING:
    from filegate.clients.identity_provider import IdentityProviderClient
    from filegate.services.session_service import SessionManager

logger = logging.getLogger(__name__)


class OAuthFlow:
    """Drives the authorization-code flow for one fixed OAuth client."""

    def __init__(
        self,
        identity_provider: "IdentityProviderClient",
        session_manager: "SessionManager",
    ) -> None:
        self.identity_provider = identity_provider
        self.sessions = session_manager

    def start(self, session: SessionData, original_url: str) -> str:
        """Record where the caller was going and return the provider login URL.

        Args:
            session: The caller's (unauthenticated) session.
            original_url: Full URL of the request that needs authentication.

        Returns:
            Authorization URL to redirect the browser to.
        """
        if session.auth_state is AuthState.AUTHENTICATED:
            logger.debug("start() called on an authenticated session; restarting flow")
        self.sessions.set_pending_redirect(session, original_url)
        return self.identity_provider.authorization_url()

    async def finish(self, session: SessionData, code: str | None) -> tuple[str, SessionData]:
        """Complete the flow with the code from the provider callback.

        The credential write, the pending-redirect consumption and the token
        rotation happen in one store update; a callback that loses a race
        with another one for the same session changes nothing.

        Returns:
            (pending URL to redirect the browser back to, authenticated
            session under its new token)

        Raises:
            AuthCodeMissingError: The callback carried no code.
            PendingRedirectMissingError: The session never went through
                start(), or another callback already completed it.
            ProviderExchangeError: The provider rejected the code.
            UpstreamTimeoutError: The exchange timed out.
            UpstreamUnavailableError: The provider could not be reached.
        """
        if not code:
            raise AuthCodeMissingError()
        if not self.sessions.get_pending_redirect(session):
            raise PendingRedirectMissingError()

        try:
            grant = await self.identity_provider.exchange_code(code)
        except ProviderExchangeError as e:
            logger.error(
                "Identity provider authorization error: %s (provider_error=%s)",
                e.message,
                e.provider_error,
            )
            raise

        completed = self.sessions.complete_auth(
            session,
            access_token=grant.access_token,
            instance_url=grant.instance_url,
            user_id=grant.user_id,
        )
        if completed is None:
            raise PendingRedirectMissingError("Session ended during authentication")
        authenticated, redirect_url = completed
        logger.info("Logged in as user %s", grant.user_id)
        return redirect_url, authenticated
