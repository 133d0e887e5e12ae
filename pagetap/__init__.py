"""
pagetap - network activity correlation for instrumented pages.

Usage:
    from pagetap import AsyncCDPSession, NetworkCorrelationEngine

    engine = NetworkCorrelationEngine()
    session = AsyncCDPSession(ws_url=ws_url, engine=engine)
    await session.run()

    for record in engine.snapshot():
        print(record.summary())
"""

__version__ = "0.1.0"

from pagetap.cdp.async_cdp_session import AsyncCDPSession
from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.engine.notification_bus import AbstractNetworkObserver
from pagetap.data_models.network import NetworkRecord

__all__ = [
    "AbstractNetworkObserver",
    "AsyncCDPSession",
    "NetworkCorrelationEngine",
    "NetworkRecord",
]
