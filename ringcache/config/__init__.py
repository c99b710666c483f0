"""Configuration module for Ring-Cache."""

from .logging_setup import setup_logging
from .settings import Settings, settings

__all__ = ["Settings", "settings", "setup_logging"]
