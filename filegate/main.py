"""Application entry point and bootstrap.

This module loads configuration (failing fast when it is incomplete),
wires clients and services, builds the FastAPI app and runs it under
uvicorn.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx
from fastapi import FastAPI

from filegate import __version__
from filegate.clients.identity_provider import IdentityProviderClient
from filegate.clients.object_store import ObjectStoreClient, create_s3_client
from filegate.clients.record_authority import RecordAuthorityClient
from filegate.config import GatewayConfig
from filegate.errors import ConfigMissingError
from filegate.logging_filters import configure_logging, install_uvicorn_access_log_filters
from filegate.models.domain import HealthResponse
from filegate.routers import create_download_router
from filegate.services import (
    DeliveryService,
    InMemorySessionStore,
    OAuthFlow,
    PermissionService,
    SessionManager,
    SessionStore,
)

configure_logging()
logger = logging.getLogger(__name__)


class Application:
    """Main application container.

    Owns every long-lived component and its lifecycle. Components are passed
    explicitly into the router; nothing is reached through module globals.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        s3_client: Any = None,
        http_client: httpx.AsyncClient | None = None,
        session_store: SessionStore | None = None,
    ) -> None:
        """Initialize the application with configuration.

        Args:
            config: Application configuration.
            s3_client: Optional pre-built S3 client (tests, custom endpoints).
            http_client: Optional pre-built HTTP client for OAuth and record reads.
            session_store: Optional session store; in-memory by default.
        """
        self.config = config
        self.s3_client = s3_client
        self.http_client = http_client
        self._owns_http_client = http_client is None
        self.session_store: SessionStore = session_store or InMemorySessionStore()
        self.fastapi_app: FastAPI | None = None

        # Services (initialized in setup)
        self.session_manager: SessionManager | None = None
        self.oauth_flow: OAuthFlow | None = None
        self.permission_service: PermissionService | None = None
        self.delivery_service: DeliveryService | None = None

        self._sweep_task: asyncio.Task | None = None

    def setup(self) -> None:
        """Create clients and services."""
        logger.info("Setting up application components...")
        config = self.config

        if self.s3_client is None:
            self.s3_client = create_s3_client(config)
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(config.http_timeout_seconds),
                follow_redirects=False,
            )

        self.session_manager = SessionManager(
            self.session_store,
            secret=config.session_secret,
            max_age_seconds=config.session_max_age_seconds,
            cookie_name=config.session_cookie_name,
            cookie_secure=config.cookie_secure,
        )
        identity_provider = IdentityProviderClient(
            self.http_client,
            authorize_endpoint=config.authorize_endpoint,
            token_endpoint=config.token_endpoint,
            client_id=config.sf_consumer_key,
            client_secret=config.sf_consumer_secret,
            redirect_uri=config.sf_auth_callback_url,
            scope=config.sf_oauth_scope,
        )
        self.oauth_flow = OAuthFlow(identity_provider, self.session_manager)
        self.permission_service = PermissionService(RecordAuthorityClient(self.http_client))
        self.delivery_service = DeliveryService(
            ObjectStoreClient(self.s3_client, bucket=config.aws_s3_bucket),
            chunk_size=config.stream_chunk_size,
        )
        logger.info(
            "Services initialized (bucket=%s, session_duration=%smin, secure_cookie=%s)",
            config.aws_s3_bucket,
            config.session_duration,
            config.cookie_secure,
        )

    def create_fastapi_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application.
        """

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            logger.info("FastAPI application starting...")
            self.start_background_tasks()
            yield
            logger.info("FastAPI application shutting down...")
            await self.shutdown()

        self.fastapi_app = FastAPI(
            title="filegate",
            description="Record-gated file download gateway",
            version=__version__,
            lifespan=lifespan,
        )
        self.register_routes(self.fastapi_app)
        return self.fastapi_app

    def register_routes(self, app: FastAPI) -> None:
        if (
            self.session_manager is None
            or self.oauth_flow is None
            or self.permission_service is None
            or self.delivery_service is None
        ):
            raise RuntimeError("Application.setup() must run before routes are registered")

        app.include_router(
            create_download_router(
                session_manager=self.session_manager,
                oauth_flow=self.oauth_flow,
                permission_service=self.permission_service,
                delivery_service=self.delivery_service,
                api_version=self.config.sf_api_version,
            )
        )
        logger.info("Download router registered")

        @app.get("/health", response_model=HealthResponse)
        async def health_check() -> HealthResponse:
            """Health check endpoint."""
            return HealthResponse(status="healthy", active_sessions=len(self.session_store))

    def start_background_tasks(self) -> None:
        """Start the periodic expired-session sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_sessions_forever())

    async def _sweep_sessions_forever(self) -> None:
        interval = self.config.session_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self.session_manager is not None:
                removed = self.session_manager.sweep_expired()
                if removed:
                    logger.info("Expired %d sessions", removed)

    async def shutdown(self) -> None:
        """Stop background tasks and close outbound clients."""
        logger.info("Initiating graceful shutdown...")

        if self._sweep_task is not None and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None

        if self.http_client is not None and self._owns_http_client:
            await self.http_client.aclose()
            logger.info("HTTP client closed")

        logger.info("Graceful shutdown complete")


def create_app(config: GatewayConfig | None = None) -> Application:
    """Create and setup the application.

    Args:
        config: Optional configuration. Loaded from files and environment
                when not provided.

    Raises:
        ConfigMissingError: If required configuration is absent.
    """
    if config is None:
        config = GatewayConfig.load()

    app = Application(config)
    app.setup()
    app.create_fastapi_app()
    return app


def main() -> None:
    """Run the gateway under uvicorn."""
    import uvicorn

    try:
        config = GatewayConfig.load()
    except ConfigMissingError as e:
        logger.error("%s", e.message)
        sys.exit(1)

    configure_logging(config.log_level)
    logger.info("Starting filegate...")
    app = create_app(config)

    uvicorn_config = uvicorn.Config(
        app.fastapi_app,
        host=config.bind_host,
        port=config.port,
        log_level=config.log_level.lower(),
        proxy_headers=True,
    )
    # Ensure Uvicorn logging is configured, then install access log filters.
    uvicorn_config.load()
    install_uvicorn_access_log_filters()

    server = uvicorn.Server(uvicorn_config)
    logger.info("Listening on http://%s:%d", config.bind_host, config.port)
    server.run()


if __name__ == "__main__":
    main()
