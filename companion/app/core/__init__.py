"""Core utilities for the companion API."""

from companion.app.core.config import settings
from companion.app.core.logging import get_logger, setup_logging

__all__ = ["settings", "get_logger", "setup_logging"]
