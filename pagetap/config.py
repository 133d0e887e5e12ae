"""
pagetap/config.py

Centralized environment variable configuration.
"""

import logging
import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()


class Config():
    """
    Centralized configuration for environment variables.
    """

    # logging
    LOG_LEVEL: int = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s:%(lineno)d - %(levelname)s - %(message)s")
    LOG_DATE_FORMAT: str = os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S")

    # history store
    HISTORY_CAPACITY: int = int(os.getenv("PAGETAP_HISTORY_CAPACITY", "500"))
    EVICTION_BATCH_SIZE: int = int(os.getenv("PAGETAP_EVICTION_BATCH_SIZE", "100"))

    # instrumentation channel
    BINDING_NAME: str = os.getenv("PAGETAP_BINDING_NAME", "__pagetapNetworkMonitor")
    BODY_MAX_CHARS: int = int(os.getenv("PAGETAP_BODY_MAX_CHARS", "250000"))
    QUEUE_MAX_SIZE: int = int(os.getenv("PAGETAP_QUEUE_MAX_SIZE", "10000"))

    # correlation table
    RETIRED_KEYS_MAX_SIZE: int = int(os.getenv("PAGETAP_RETIRED_KEYS_MAX_SIZE", "10000"))

    @classmethod
    def as_dict(cls) -> dict[str, Any]:
        """
        Return a dictionary of all UPPERCASE class attributes and their values.
        Return:
            dict[str, Any]: A dictionary of all UPPERCASE class attributes and their values.
        """
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
