"""aiohttp application serving the exporter endpoints."""

from .app import CONFIG_KEY, create_app
from .logging_setup import configure_logging

__all__ = ["CONFIG_KEY", "configure_logging", "create_app"]
