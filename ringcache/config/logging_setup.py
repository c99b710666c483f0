"""Logging configuration shared by applications embedding the router."""

import logging
import sys
from typing import Optional

from .settings import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(debug: Optional[bool] = None, level: Optional[str] = None) -> None:
    """
    Configure root logging.

    Args:
        debug: Force DEBUG level (default from settings.DEBUG)
        level: Explicit level name, used when debug is off
               (default from settings.LOG_LEVEL)
    """
    debug = settings.DEBUG if debug is None else debug
    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )
