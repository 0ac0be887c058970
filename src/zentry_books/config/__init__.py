"""Configuration module for Zentry Books."""

from zentry_books.config.logging import configure_logging
from zentry_books.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging"]
