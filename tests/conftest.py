"""Pytest configuration and shared fakes."""

import io
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

import httpx
import pytest

from filegate.config import GatewayConfig
from filegate.enums import OwnerMetadataKey
from filegate.errors import ObjectChangedError, ObjectNotFoundError
from filegate.models.domain import ObjectMetadata
from filegate.services.session_service import InMemorySessionStore, SessionManager

# Configure pytest-asyncio to auto-detect async tests
pytest_plugins = ("pytest_asyncio",)

RECORD_ID = "001xx000003DGbQAAU"
RECORD_TYPE = "Account"
OBJECT_KEY = f"{RECORD_ID}/report.pdf"
OBJECT_URL = f"https://files-bucket.s3.eu-west-1.amazonaws.com/{OBJECT_KEY}"
INSTANCE_URL = "https://example.my.salesforce.com"
SESSION_SECRET = "test-session-secret"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeBody:
    """Stand-in for botocore's StreamingBody."""

    def __init__(self, data: bytes) -> None:
        self._buf = io.BytesIO(data)
        self.closed = False
        self.read_sizes: list[int] = []

    def read(self, amt: int | None = None) -> bytes:
        chunk = self._buf.read(amt) if amt else self._buf.read()
        self.read_sizes.append(len(chunk))
        return chunk

    def close(self) -> None:
        self.closed = True


class FakeObjectStore:
    """In-memory replacement for ObjectStoreClient recording every call."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str | None, dict[str, str], str]] = {}
        self.head_calls: list[str] = []
        self.get_calls: list[str] = []
        self.get_etags: list[str | None] = []
        self.bodies: list[FakeBody] = []
        # Runs after every head(); lets a test replace the object between reads.
        self.after_head: Callable[[str], None] | None = None
        self._version = 0

    def add(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = "application/pdf",
        record_id: str | None = RECORD_ID,
        record_type: str | None = RECORD_TYPE,
    ) -> None:
        metadata: dict[str, str] = {OwnerMetadataKey.OWNER_ID.value: "005xx000001Sv6mAAC"}
        if record_id is not None:
            metadata[OwnerMetadataKey.LINKED_ENTITY_ID.value] = record_id
        if record_type is not None:
            metadata[OwnerMetadataKey.LINKED_ENTITY_API_NAME.value] = record_type
        self._version += 1
        self.objects[key] = (data, content_type, metadata, f'"v{self._version}"')

    def head(self, key: str) -> ObjectMetadata:
        self.head_calls.append(key)
        if key not in self.objects:
            raise ObjectNotFoundError(f"No object at key {key!r}")
        data, content_type, metadata, etag = self.objects[key]
        if self.after_head is not None:
            self.after_head(key)
        return ObjectMetadata(
            key=key,
            content_type=content_type,
            content_length=len(data),
            etag=etag,
            owner_record_type=metadata.get(OwnerMetadataKey.LINKED_ENTITY_API_NAME),
            owner_record_id=metadata.get(OwnerMetadataKey.LINKED_ENTITY_ID),
            user_metadata=metadata,
        )

    def open_body(self, key: str, *, etag: str | None = None) -> FakeBody:
        self.get_calls.append(key)
        self.get_etags.append(etag)
        if key not in self.objects:
            raise ObjectNotFoundError(f"No object at key {key!r}")
        data, _, _, current = self.objects[key]
        if etag is not None and etag != current:
            raise ObjectChangedError(f"Object at key {key!r} changed")
        body = FakeBody(data)
        self.bodies.append(body)
        return body


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend."""
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def session_manager(session_store, clock) -> SessionManager:
    return SessionManager(
        session_store,
        secret=SESSION_SECRET,
        max_age_seconds=120 * 60,
        cookie_name="sessionId",
        cookie_secure=False,
        clock=clock,
    )


@pytest.fixture
def object_store() -> FakeObjectStore:
    store = FakeObjectStore()
    store.add(OBJECT_KEY, b"%PDF-1.7 fake report body")
    return store


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig(
        sf_login_url="https://login.example.com",
        sf_auth_callback_url="http://testserver/auth/callback",
        sf_consumer_key="consumer-key",
        sf_consumer_secret="consumer-secret",
        sf_api_version="58.0",
        aws_access_key_id="AKIAEXAMPLEEXAMPLE00",
        aws_secret_access_key="secret-access-key",
        aws_region="eu-west-1",
        aws_s3_bucket="files-bucket",
        session_secret=SESSION_SECRET,
    )


class FakeSalesforce:
    """httpx MockTransport handler for the token endpoint and record reads.

    Authorization codes are single use, like the real provider. Readable
    records are granted per access token.
    """

    def __init__(self) -> None:
        self.valid_codes: dict[str, str] = {}
        self.readable: dict[str, set[tuple[str, str]]] = {}
        self.token_requests: list[dict[str, str]] = []
        self.record_requests: list[httpx.Request] = []
        self.token_failure: httpx.Response | None = None
        self.revoked: set[str] = set()

    def issue_code(self, code: str, *, user_id: str = "005xx000001Sv6mAAC") -> None:
        self.valid_codes[code] = user_id

    def grant(self, access_token: str, record_type: str, record_id: str) -> None:
        self.readable.setdefault(access_token, set()).add((record_type, record_id))

    def revoke(self, access_token: str) -> None:
        self.revoked.add(access_token)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/services/oauth2/token":
            return self._token(request)
        if "/sobjects/" in request.url.path:
            return self._record(request)
        return httpx.Response(404, json=[{"errorCode": "NOT_FOUND"}])

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode("utf-8")))
        self.token_requests.append(form)
        if self.token_failure is not None:
            return self.token_failure
        user_id = self.valid_codes.pop(form.get("code", ""), None)
        if user_id is None:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "expired authorization code"},
            )
        return httpx.Response(
            200,
            json={
                "access_token": f"00Dxx0000001gPL!token-for-{user_id}",
                "instance_url": INSTANCE_URL,
                "id": f"https://login.example.com/id/00Dxx0000001gPLEAY/{user_id}",
                "token_type": "Bearer",
                "issued_at": "1700000000000",
            },
        )

    def _record(self, request: httpx.Request) -> httpx.Response:
        self.record_requests.append(request)
        auth = request.headers.get("authorization", "")
        token = auth.removeprefix("Bearer ").strip()
        parts = request.url.path.rstrip("/").split("/")
        record_type, record_id = parts[-2], parts[-1]
        if token in self.revoked:
            return httpx.Response(
                401,
                json=[{"errorCode": "INVALID_SESSION_ID", "message": "Session expired or invalid"}],
            )
        if (record_type, record_id) in self.readable.get(token, set()):
            return httpx.Response(200, json={"Id": record_id, "attributes": {"type": record_type}})
        return httpx.Response(
            404,
            json=[{"errorCode": "NOT_FOUND", "message": "The requested resource does not exist"}],
        )


@pytest.fixture
def salesforce() -> FakeSalesforce:
    return FakeSalesforce()
