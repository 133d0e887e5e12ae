"""
pagetap/utils/logger.py

Package-wide logger factory.
"""

import logging

from pagetap.config import Config

_PACKAGE_LOGGER_NAME = "pagetap"
_configured = False


def _configure_package_logger() -> None:
    """Attach a single stream handler to the package root logger."""
    global _configured
    if _configured:
        return
    package_logger = logging.getLogger(_PACKAGE_LOGGER_NAME)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=Config.LOG_FORMAT, datefmt=Config.LOG_DATE_FORMAT))
        package_logger.addHandler(handler)
    package_logger.setLevel(Config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger under the package namespace.
    Args:
        name: Usually `__name__` of the calling module.
    Returns:
        A configured `logging.Logger`.
    """
    _configure_package_logger()
    return logging.getLogger(name)
