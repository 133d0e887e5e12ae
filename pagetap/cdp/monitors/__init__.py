"""
pagetap/cdp/monitors/__init__.py

Async CDP monitors.
"""

from pagetap.cdp.monitors.async_network_activity_monitor import AsyncNetworkActivityMonitor

__all__ = [
    "AsyncNetworkActivityMonitor",
]
