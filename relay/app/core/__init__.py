"""Core utilities for the relay application."""

from relay.app.core.config import Settings, settings
from relay.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
