"""Core utilities for configuration, logging, models, and error handling."""

from .config import AppSettings, LimitSettings, load_app_settings
from .interfaces import OperationError
from .logging import configure_logging
from .sanitizer import sanitize

__all__ = [
    "AppSettings",
    "LimitSettings",
    "OperationError",
    "configure_logging",
    "load_app_settings",
    "sanitize",
]
