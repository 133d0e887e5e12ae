"""
pagetap/cdp/__init__.py

CDP (Chrome DevTools Protocol) front-end.
Provides the async CDP session and the monitor that feeds binding notifications to the engine.
"""

from pagetap.cdp.async_cdp_session import AsyncCDPSession
from pagetap.cdp.monitors.async_network_activity_monitor import AsyncNetworkActivityMonitor

__all__ = [
    "AsyncCDPSession",
    "AsyncNetworkActivityMonitor",
]
