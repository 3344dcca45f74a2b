"""ASGI entry point for uvicorn.

Usage:
    uvicorn filegate.asgi:app --host 0.0.0.0 --port 3000 --proxy-headers
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from filegate import __version__
from filegate.config import GatewayConfig
from filegate.logging_filters import configure_logging, install_uvicorn_access_log_filters
from filegate.main import Application

# Global application instance for lifespan management
_application: Application | None = None


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan for ASGI server.

    A ConfigMissingError raised here aborts startup.
    """
    global _application

    config = GatewayConfig.load()
    configure_logging(config.log_level)
    install_uvicorn_access_log_filters()

    _application = Application(config)
    _application.setup()
    _application.register_routes(fastapi_app)
    _application.start_background_tasks()

    yield

    await _application.shutdown()
    _application = None


app = FastAPI(
    title="filegate",
    description="Record-gated file download gateway",
    version=__version__,
    lifespan=lifespan,
)
