"""Unit tests for the session manager and in-memory session store."""

import threading
from datetime import timedelta

import pytest
from starlette.responses import Response

from filegate.enums import AuthState
from filegate.errors import PendingRedirectMissingError
from filegate.models.domain import SessionData
from filegate.services.session_service import (
    InMemorySessionStore,
    SessionManager,
    sign_token,
    unsign_cookie,
)
from tests.conftest import INSTANCE_URL, SESSION_SECRET


PENDING_URL = "http://testserver/download?url=x"


def _cookies(manager: SessionManager, value: str | None) -> dict[str, str]:
    return {manager.cookie_name: value} if value else {}


def _login(manager: SessionManager, session, access_token: str):
    """Run the pending-redirect and completion steps; return the new session and its cookie."""
    manager.set_pending_redirect(session, PENDING_URL)
    updated, _ = manager.complete_auth(session, access_token, INSTANCE_URL, "005USER")
    return updated, manager.cookie_value(updated)


class TestCookieSigning:
    def test_round_trip(self):
        value = sign_token(SESSION_SECRET, "abc123")
        assert unsign_cookie(SESSION_SECRET, value) == "abc123"

    def test_wrong_secret_rejected(self):
        value = sign_token("other-secret", "abc123")
        assert unsign_cookie(SESSION_SECRET, value) is None

    def test_tampered_token_rejected(self):
        value = sign_token(SESSION_SECRET, "abc123")
        _, _, sig = value.partition(".")
        assert unsign_cookie(SESSION_SECRET, f"abc124.{sig}") is None

    @pytest.mark.parametrize("value", [None, "", "no-dot", ".sig", "token."])
    def test_malformed_values_rejected(self, value):
        assert unsign_cookie(SESSION_SECRET, value) is None


class TestGetOrCreate:
    def test_creates_session_without_cookie(self, session_manager, session_store):
        session, cookie = session_manager.get_or_create({})

        assert cookie is not None
        assert unsign_cookie(SESSION_SECRET, cookie) == session.token
        assert session.auth_state is AuthState.UNAUTHENTICATED
        assert len(session_store) == 1

    def test_existing_cookie_returns_same_session(self, session_manager):
        first, cookie = session_manager.get_or_create({})
        second, new_cookie = session_manager.get_or_create(_cookies(session_manager, cookie))

        assert new_cookie is None
        assert second.token == first.token

    def test_forged_cookie_gets_fresh_session(self, session_manager):
        first, _ = session_manager.get_or_create({})
        forged = f"{first.token}.not-the-signature"

        second, cookie = session_manager.get_or_create(_cookies(session_manager, forged))

        assert cookie is not None
        assert second.token != first.token

    def test_touched_session_survives_within_window(self, session_manager, clock):
        session, _ = session_manager.get_or_create({})
        session, cookie = _login(session_manager, session, "token-1")

        clock.advance(minutes=100)
        session_manager.touch(session)
        clock.advance(minutes=100)

        again, new_cookie = session_manager.get_or_create(_cookies(session_manager, cookie))
        assert new_cookie is None
        assert again.token == session.token
        assert again.access_token == "token-1"
        assert again.instance_url == INSTANCE_URL
        assert again.user_id == "005USER"

    def test_expired_session_is_replaced_not_resurrected(self, session_manager, clock):
        session, _ = session_manager.get_or_create({})
        session, cookie = _login(session_manager, session, "token-1")

        clock.advance(minutes=121)

        fresh, new_cookie = session_manager.get_or_create(_cookies(session_manager, cookie))
        assert new_cookie is not None
        assert fresh.token != session.token
        assert fresh.access_token is None
        assert fresh.auth_state is AuthState.UNAUTHENTICATED

        # The old token stays dead even when presented again.
        again, _ = session_manager.get_or_create(_cookies(session_manager, cookie))
        assert again.token != session.token


class TestPendingRedirect:
    def test_set_get_clear(self, session_manager):
        session, _ = session_manager.get_or_create({})
        session_manager.set_pending_redirect(session, "http://testserver/download?url=x")

        assert session_manager.get_pending_redirect(session) == "http://testserver/download?url=x"

        session_manager.clear_pending_redirect(session)
        assert session_manager.get_pending_redirect(session) is None


class TestCompleteAuth:
    def test_sets_all_fields_and_consumes_redirect(self, session_manager):
        session, _ = session_manager.get_or_create({})
        session_manager.set_pending_redirect(session, PENDING_URL)

        updated, redirect = session_manager.complete_auth(session, "tok", INSTANCE_URL, "005USER")

        assert redirect == PENDING_URL
        assert updated.auth_state is AuthState.AUTHENTICATED
        assert updated.pending_redirect_url is None
        assert (updated.access_token, updated.instance_url, updated.user_id) == (
            "tok",
            INSTANCE_URL,
            "005USER",
        )

    def test_rotates_token(self, session_manager, session_store):
        session, cookie = session_manager.get_or_create({})
        updated, new_cookie = _login(session_manager, session, "tok")

        assert updated.token != session.token
        assert new_cookie != cookie
        assert session_manager.refresh(session) is None
        assert session_manager.refresh(updated).access_token == "tok"
        assert len(session_store) == 1

        # The cookie issued before login no longer carries any session.
        stale, reissued = session_manager.get_or_create(_cookies(session_manager, cookie))
        assert reissued is not None
        assert stale.token not in (session.token, updated.token)
        assert stale.access_token is None

    def test_keeps_creation_time(self, session_manager):
        session, _ = session_manager.get_or_create({})
        updated, _ = _login(session_manager, session, "tok")
        assert updated.created_at == session.created_at

    def test_missing_pending_redirect_changes_nothing(self, session_manager, session_store):
        session, _ = session_manager.get_or_create({})

        with pytest.raises(PendingRedirectMissingError):
            session_manager.complete_auth(session, "tok", INSTANCE_URL, "005USER")

        current = session_manager.refresh(session)
        assert current == session
        assert len(session_store) == 1

    def test_second_completion_on_old_token_finds_nothing(self, session_manager):
        session, _ = session_manager.get_or_create({})
        updated, _ = _login(session_manager, session, "tok-a")

        assert session_manager.complete_auth(session, "tok-b", INSTANCE_URL, "005OTHER") is None
        assert session_manager.refresh(updated).access_token == "tok-a"

    def test_rejects_partial_credentials(self, session_manager):
        session, _ = session_manager.get_or_create({})
        session_manager.set_pending_redirect(session, PENDING_URL)
        with pytest.raises(ValueError):
            session_manager.complete_auth(session, "tok", "", "005USER")
        current = session_manager.refresh(session)
        assert current.access_token is None
        assert current.pending_redirect_url == PENDING_URL

    def test_returns_none_for_expired_session(self, session_manager, clock):
        session, _ = session_manager.get_or_create({})
        session_manager.set_pending_redirect(session, PENDING_URL)
        clock.advance(minutes=121)
        assert session_manager.complete_auth(session, "tok", INSTANCE_URL, "005USER") is None

    def test_credential_derived_only_when_authenticated(self, session_manager):
        session, _ = session_manager.get_or_create({})
        assert session_manager.credential(session, "58.0") is None

        updated, _ = _login(session_manager, session, "tok")
        credential = session_manager.credential(updated, "58.0")
        assert credential.access_token == "tok"
        assert credential.instance_url == INSTANCE_URL
        assert credential.api_version == "58.0"
        assert "tok" not in repr(credential)

    def test_concurrent_readers_never_see_partial_update(self, session_manager, session_store, clock):
        session, _ = session_manager.get_or_create({})
        latest = [session]
        observed = []
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                current = session_store.get(latest[-1].token, clock())
                if current is not None:
                    observed.append((current.access_token, current.instance_url, current.user_id))

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for i in range(200):
            session_manager.set_pending_redirect(latest[-1], PENDING_URL)
            updated, _ = session_manager.complete_auth(
                latest[-1], f"tok-{i}", f"{INSTANCE_URL}/{i}", f"user-{i}"
            )
            latest.append(updated)
        stop.set()
        for t in threads:
            t.join()

        for token, instance, user in observed:
            if token is None:
                assert instance is None and user is None
            else:
                suffix = token.removeprefix("tok-")
                assert instance == f"{INSTANCE_URL}/{suffix}"
                assert user == f"user-{suffix}"


class TestDropCredential:
    def test_session_returns_to_unauthenticated(self, session_manager):
        session, _ = session_manager.get_or_create({})
        updated, cookie = _login(session_manager, session, "tok")

        session_manager.drop_credential(updated)

        current, new_cookie = session_manager.get_or_create(_cookies(session_manager, cookie))
        assert new_cookie is None
        assert current.token == updated.token
        assert current.auth_state is AuthState.UNAUTHENTICATED
        assert (current.access_token, current.instance_url, current.user_id) == (None, None, None)
        assert session_manager.credential(current, "58.0") is None


class TestStoreUpdate:
    def test_failed_mutation_keeps_snapshot(self, session_store, clock):
        session = SessionData(token="t1", created_at=clock(), expires_at=clock() + timedelta(hours=1))
        session_store.put(session)

        def boom(s):
            raise RuntimeError("mutation failed")

        with pytest.raises(RuntimeError):
            session_store.update("t1", clock(), boom)
        assert session_store.get("t1", clock()) == session

    def test_new_token_rekeys_entry(self, session_store, clock):
        session = SessionData(token="t1", created_at=clock(), expires_at=clock() + timedelta(hours=1))
        session_store.put(session)

        moved = session_store.update("t1", clock(), lambda s: s.model_copy(update={"token": "t2"}))

        assert moved.token == "t2"
        assert session_store.get("t1", clock()) is None
        assert session_store.get("t2", clock()) == moved
        assert len(session_store) == 1


class TestCookieAttributes:
    def test_cookie_is_httponly_and_lax(self, session_manager):
        response = Response()
        session_manager.apply_cookie(response, "value.sig")

        header = response.headers["set-cookie"].lower()
        assert "httponly" in header
        assert "samesite=lax" in header
        assert "max-age=7200" in header
        assert "secure" not in header

    def test_secure_flag_when_configured(self, session_store, clock):
        manager = SessionManager(
            session_store,
            secret=SESSION_SECRET,
            max_age_seconds=60,
            cookie_secure=True,
            clock=clock,
        )
        response = Response()
        manager.apply_cookie(response, "value.sig")
        assert "secure" in response.headers["set-cookie"].lower()

    def test_no_cookie_written_for_none(self, session_manager):
        response = Response()
        session_manager.apply_cookie(response, None)
        assert "set-cookie" not in response.headers


class TestStoreSweep:
    def test_sweep_removes_only_expired(self, session_manager, session_store, clock):
        old, _ = session_manager.get_or_create({})
        clock.advance(minutes=90)
        young, _ = session_manager.get_or_create({})
        clock.advance(minutes=40)

        assert session_manager.sweep_expired() == 1
        assert session_store.get(young.token, clock()) is not None
        assert session_store.get(old.token, clock()) is None

    def test_delete(self, session_manager, session_store, clock):
        session, _ = session_manager.get_or_create({})
        session_store.delete(session.token)
        assert session_store.get(session.token, clock()) is None

    def test_manager_requires_secret(self):
        with pytest.raises(ValueError):
            SessionManager(InMemorySessionStore(), secret="", max_age_seconds=60)
