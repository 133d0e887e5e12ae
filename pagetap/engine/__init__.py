"""
pagetap/engine/__init__.py

Correlation engine package.
NOTE: importing handlers here triggers AbstractProtocolHandler.__init_subclass__ for every
protocol handler, so the family -> handler registry is populated before the engine is built.
"""

from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.engine.correlation_table import CorrelationTable
from pagetap.engine.decoder import decode
from pagetap.engine.handlers import AbstractProtocolHandler, get_handler
from pagetap.engine.history_store import HistoryStore
from pagetap.engine.notification_bus import AbstractNetworkObserver, NotificationBus

__all__ = [
    "AbstractNetworkObserver",
    "AbstractProtocolHandler",
    "CorrelationTable",
    "HistoryStore",
    "NetworkCorrelationEngine",
    "NotificationBus",
    "decode",
    "get_handler",
]
