"""Server-side session lifecycle.

Sessions are immutable ``SessionData`` snapshots kept in a ``SessionStore``
keyed by an opaque token. The browser only ever holds
``<token>.<signature>`` in an HttpOnly cookie; credentials never leave the
server. Every mutation replaces the whole snapshot under the store lock, so
concurrent requests on the same session (two tabs) see either the old or
the new session, never a partial one.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Protocol

from starlette.responses import Response

from filegate.errors import PendingRedirectMissingError
from filegate.models.domain import Credential, SessionData

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    """Keyed session storage with expiry."""

    def get(self, token: str, now: datetime) -> SessionData | None: ...

    def put(self, session: SessionData) -> None: ...

    def update(
        self, token: str, now: datetime, mutate: Callable[[SessionData], SessionData]
    ) -> SessionData | None: ...

    def touch(self, token: str, now: datetime, expires_at: datetime) -> SessionData | None: ...

    def delete(self, token: str) -> None: ...

    def sweep(self, now: datetime) -> int: ...

    def __len__(self) -> int: ...


class InMemorySessionStore:
    """Process-local session store.

    Expired entries are treated as absent on read and dropped; ``sweep``
    reclaims entries nobody reads again.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionData] = {}
        self._lock = threading.Lock()

    def _live(self, token: str, now: datetime) -> SessionData | None:
        # Caller holds the lock.
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired(now):
            del self._sessions[token]
            return None
        return session

    def get(self, token: str, now: datetime) -> SessionData | None:
        with self._lock:
            return self._live(token, now)

    def put(self, session: SessionData) -> None:
        with self._lock:
            self._sessions[session.token] = session

    def update(
        self, token: str, now: datetime, mutate: Callable[[SessionData], SessionData]
    ) -> SessionData | None:
        """Apply ``mutate`` to the live snapshot and store the result atomically.

        If ``mutate`` raises, the stored snapshot is left as it was. If it
        returns a snapshot under a different token, the session is re-keyed
        and the old token stops resolving.

        Returns:
            The new snapshot, or None if the session is absent or expired.
        """
        with self._lock:
            current = self._live(token, now)
            if current is None:
                return None
            updated = mutate(current)
            if updated.token != token:
                del self._sessions[token]
            self._sessions[updated.token] = updated
            return updated

    def touch(self, token: str, now: datetime, expires_at: datetime) -> SessionData | None:
        return self.update(token, now, lambda s: s.model_copy(update={"expires_at": expires_at}))

    def delete(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def sweep(self, now: datetime) -> int:
        """Drop expired sessions.

        Returns:
            Number of sessions removed.
        """
        with self._lock:
            expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.debug("Swept %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _signature(secret: str, token: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def sign_token(secret: str, token: str) -> str:
    """Return the cookie value for a session token."""
    return f"{token}.{_signature(secret, token)}"


def unsign_cookie(secret: str, value: str | None) -> str | None:
    """Return the token carried by a cookie value, or None if the signature is bad."""
    if not value or "." not in value:
        return None
    token, _, sig = value.rpartition(".")
    if not token or not sig:
        return None
    if not hmac.compare_digest(sig, _signature(secret, token)):
        return None
    return token


class SessionManager:
    """Owns session creation, sliding expiry and field updates.

    The store is injected so handlers never reach for a module-level
    singleton.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        secret: str,
        max_age_seconds: int,
        cookie_name: str = "sessionId",
        cookie_secure: bool = False,
        clock: Clock = utcnow,
    ) -> None:
        """Initialize the session manager.

        Args:
            store: Backing session store.
            secret: Secret used to sign session cookies.
            max_age_seconds: Sliding inactivity window.
            cookie_name: Name of the session cookie.
            cookie_secure: Whether the cookie carries the Secure attribute.
            clock: Time source, overridable in tests.
        """
        if not secret:
            raise ValueError("session secret is required")
        self.store = store
        self._secret = secret
        self.max_age_seconds = max_age_seconds
        self.cookie_name = cookie_name
        self.cookie_secure = cookie_secure
        self._clock = clock

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.max_age_seconds)

    def get_or_create(self, cookies: Mapping[str, str]) -> tuple[SessionData, str | None]:
        """Look up the session carried by the request cookies.

        A missing, forged or expired cookie yields a fresh empty session.

        Returns:
            (session, cookie value to set or None when the existing cookie stays valid)
        """
        now = self._clock()
        token = unsign_cookie(self._secret, cookies.get(self.cookie_name))
        if token is not None:
            session = self.store.get(token, now)
            if session is not None:
                return session, None

        session = SessionData(
            token=secrets.token_urlsafe(32),
            created_at=now,
            expires_at=now + self.max_age,
        )
        self.store.put(session)
        logger.debug("Created session %r", session)
        return session, sign_token(self._secret, session.token)

    def touch(self, session: SessionData) -> None:
        """Extend the inactivity expiry to now + max age."""
        now = self._clock()
        self.store.touch(session.token, now, now + self.max_age)

    def refresh(self, session: SessionData) -> SessionData | None:
        """Return the latest stored snapshot of ``session``."""
        return self.store.get(session.token, self._clock())

    def set_pending_redirect(self, session: SessionData, url: str) -> SessionData | None:
        return self.store.update(
            session.token,
            self._clock(),
            lambda s: s.model_copy(update={"pending_redirect_url": url}),
        )

    def get_pending_redirect(self, session: SessionData) -> str | None:
        current = self.refresh(session)
        if current is None:
            return None
        return current.pending_redirect_url or None

    def clear_pending_redirect(self, session: SessionData) -> None:
        self.store.update(
            session.token,
            self._clock(),
            lambda s: s.model_copy(update={"pending_redirect_url": None}),
        )

    def complete_auth(
        self,
        session: SessionData,
        access_token: str,
        instance_url: str,
        user_id: str,
    ) -> tuple[SessionData, str] | None:
        """Finish the OAuth flow on the session as one atomic update.

        Within a single store update the pending redirect is checked and
        consumed, the credential is stored, and the session moves to a fresh
        token so a cookie planted before login never becomes authenticated.

        Returns:
            (authenticated snapshot under its new token, pending redirect URL),
            or None if the session expired meanwhile.

        Raises:
            PendingRedirectMissingError: No redirect was pending (another
                callback consumed it); the session is unchanged.
        """
        if not access_token or not instance_url:
            raise ValueError("access_token and instance_url are required together")
        consumed: list[str] = []

        def _complete(s: SessionData) -> SessionData:
            if not s.pending_redirect_url:
                raise PendingRedirectMissingError()
            consumed.append(s.pending_redirect_url)
            return s.model_copy(
                update={
                    "token": secrets.token_urlsafe(32),
                    "pending_redirect_url": None,
                    "access_token": access_token,
                    "instance_url": instance_url,
                    "user_id": user_id,
                }
            )

        updated = self.store.update(session.token, self._clock(), _complete)
        if updated is None:
            return None
        return updated, consumed[0]

    def drop_credential(self, session: SessionData) -> None:
        """Forget the access token so the next request goes through login again."""
        self.store.update(
            session.token,
            self._clock(),
            lambda s: s.model_copy(
                update={"access_token": None, "instance_url": None, "user_id": None}
            ),
        )

    def credential(self, session: SessionData, api_version: str) -> Credential | None:
        if not session.access_token or not session.instance_url:
            return None
        return Credential(
            access_token=session.access_token,
            instance_url=session.instance_url,
            api_version=api_version,
        )

    def cookie_value(self, session: SessionData) -> str:
        """Signed cookie value for ``session``; re-sent after a touch so the browser expiry slides too."""
        return sign_token(self._secret, session.token)

    def apply_cookie(self, response: Response, cookie_value: str | None) -> None:
        """Set the session cookie on ``response`` when a new one was issued."""
        if cookie_value is None:
            return
        response.set_cookie(
            key=self.cookie_name,
            value=cookie_value,
            max_age=self.max_age_seconds,
            path="/",
            httponly=True,
            secure=self.cookie_secure,
            samesite="lax",
        )

    def sweep_expired(self) -> int:
        return self.store.sweep(self._clock())
