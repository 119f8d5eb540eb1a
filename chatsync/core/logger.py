"""
Logging setup.

All modules obtain their logger through setup_logger(__name__) so handler
and format configuration lives in one place.
"""

import logging
import sys

from chatsync.core.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(name: str) -> logging.Logger:
    """Return a named logger with a stream handler attached once."""
    log = logging.getLogger(name)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)
        log.setLevel(get_settings().LOG_LEVEL.upper())
    return log
