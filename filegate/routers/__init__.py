"""HTTP routers package."""

from .download_router import create_download_router, parse_store_key

__all__ = [
    "create_download_router",
    "parse_store_key",
]
