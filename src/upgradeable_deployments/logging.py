"""
Logging setup for upgradeable-deployments.

Modules use:
    from .logging import get_logger
    logger = get_logger(__name__)

Configuration happens once, in the application entrypoint, through
configure_logging().
"""

import logging
import sys

DEFAULT_FORMAT = "[%(levelname)s] %(name)s - %(message)s"


def configure_logging(
    level: int = logging.INFO,
    fmt: str = DEFAULT_FORMAT,
    stream=sys.stderr,
):
    """
    Configure root logging handler.

    Safe to call multiple times; a second handler is never added.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)

    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a module. Does not configure anything."""
    return logging.getLogger(name)
