"""
pagetap/utils/cdp_utils.py

CDP (Chrome DevTools Protocol) utility functions.
"""

from urllib.parse import urlparse, urlunparse

import requests

from pagetap.utils.exceptions import CDPConnectionError
from pagetap.utils.logger import get_logger

logger = get_logger(name=__name__)


def get_browser_websocket_url(remote_debugging_address: str) -> str:
    """Get the normalized WebSocket URL for browser connection.

    Args:
        remote_debugging_address: The Chrome debugging server address (e.g., 'http://127.0.0.1:9222').

    Returns:
        The WebSocket URL for connecting to the browser.

    Raises:
        CDPConnectionError: If unable to get the WebSocket URL from the browser.
    """
    base = remote_debugging_address.rstrip("/")
    try:
        ver = requests.get(f"{base}/json/version", timeout=5)
        ver.raise_for_status()
        data = ver.json()
    except (requests.RequestException, ValueError) as e:
        raise CDPConnectionError(f"Failed to get browser WebSocket URL: {e}") from e

    raw_ws = data.get("webSocketDebuggerUrl")
    if not raw_ws:
        raise CDPConnectionError("/json/version missing webSocketDebuggerUrl")

    # normalize netloc to our reachable hostname:port
    parsed = urlparse(raw_ws)
    base_parsed = urlparse(base)
    fixed_netloc = f"{base_parsed.hostname}:{base_parsed.port}" if base_parsed.port else str(base_parsed.hostname)
    ws_url = urlunparse(parsed._replace(netloc=fixed_netloc))

    logger.debug("Raw WebSocket URL: %s", raw_ws)
    logger.debug("Normalized WebSocket URL: %s", ws_url)
    return ws_url
