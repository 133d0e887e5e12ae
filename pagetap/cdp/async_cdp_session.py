"""
pagetap/cdp/async_cdp_session.py

Asynchronous CDP session that attaches to a page and feeds its network activity to the correlation engine.
"""

import asyncio
import json
from typing import Any

from websockets.asyncio.client import connect, ClientConnection

from pagetap.cdp.monitors.async_network_activity_monitor import AsyncNetworkActivityMonitor
from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.utils.exceptions import CDPConnectionError
from pagetap.utils.logger import get_logger

logger = get_logger(name=__name__)


class AsyncCDPSession:
    """
    Async CDP session for network activity monitoring.
    Handles the WebSocket, CDP commands and dispatch of page events to the network activity monitor.
    """

    # page-level domains need a sessionId; browser-level domains (Target) do not
    PAGE_LEVEL_DOMAINS = {"Page", "Runtime", "Network", "DOM"}


    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        ws_url: str,
        engine: NetworkCorrelationEngine | None = None,
        binding_name: str | None = None,
        queue_max_size: int | None = None,
        capture_initial_navigation: bool = True,
    ) -> None:
        """
        Initialize AsyncCDPSession.
        Args:
            ws_url: WebSocket URL to connect to the browser session.
            engine: Correlation engine to feed (a default-configured one is created if omitted).
            binding_name: Runtime binding used by the injected script.
            queue_max_size: Bound of the monitor's inbound queue.
            capture_initial_navigation: Record the page that is already open when monitoring starts.
        NOTE:
            The CDP sessionId will be obtained automatically in run() after connecting.
            CDP sessionIds are only valid for the specific WebSocket connection where Target.attachToTarget was called.
        """
        logger.info("🔧 Initializing AsyncCDPSession")

        self.ws_url = ws_url
        self.engine = engine or NetworkCorrelationEngine()
        self.capture_initial_navigation = capture_initial_navigation
        self.ws: ClientConnection | None = None
        self.seq = 0  # sequence ID for CDP commands

        # response tracking for CDP commands
        self.pending_responses: dict[int, asyncio.Future] = {}  # command ID -> future

        # track enabled CDP domains to avoid duplicate enables
        self._enabled_domains: set[str] = set()

        # page-level session ID, obtained in run() after connecting
        self.page_session_id: str | None = None

        self.network_activity_monitor = AsyncNetworkActivityMonitor(
            engine=self.engine,
            binding_name=binding_name,
            queue_max_size=queue_max_size,
        )


    # Private methods ______________________________________________________________________________________________________

    async def _get_ws_cdp_session_id(self) -> None:
        """
        Get CDP sessionId from the current WebSocket connection.
        Must be called after connecting and starting the message receiver.
        """
        logger.info("🔍 Getting CDP session ID from current WebSocket connection...")

        # step 1: get targets to find the page targetId
        targets_result = await self.send_and_wait(method="Target.getTargets", timeout=5.0)
        cdp_target_id: str | None = None
        if targets_result and "targetInfos" in targets_result:
            for target_info in targets_result["targetInfos"]:
                if target_info.get("type") == "page":
                    cdp_target_id = target_info.get("targetId")
                    logger.info("✅ Found page targetId: %s (url: %s)", cdp_target_id, target_info.get("url", "unknown"))
                    break

        if not cdp_target_id:
            logger.error("❌ No page target found in Target.getTargets result")
            raise CDPConnectionError("No page target found")

        # step 2: attach to the page target to get the CDP sessionId
        attach_result = await self.send_and_wait(
            method="Target.attachToTarget",
            params={"targetId": cdp_target_id, "flatten": True},
            timeout=5.0,
        )
        if not attach_result or "sessionId" not in attach_result:
            logger.error("❌ No sessionId in Target.attachToTarget response")
            raise CDPConnectionError("No sessionId in Target.attachToTarget response")

        self.page_session_id = attach_result["sessionId"]
        logger.debug("✅ Got CDP sessionId from current connection: %s", self.page_session_id)

    def _handle_command_reply(self, msg: dict) -> None:
        """Resolve the future of a CDP command reply."""
        cmd_id = msg.get("id")
        future = self.pending_responses.pop(cmd_id, None)
        if future is None:
            logger.debug("📥 Command reply not awaited: id=%s", cmd_id)
            return
        if future.done():
            return

        if "result" in msg:
            future.set_result(msg["result"])
        elif "error" in msg:
            logger.error("📥 CDP command %s failed: %s", cmd_id, json.dumps(msg["error"]))
            future.set_exception(CDPConnectionError(f"CDP error: {msg['error']}"))
        else:
            future.set_result(None)

    def _fail_pending_responses(self, reason: str) -> None:
        """Fail every awaited command (connection is gone)."""
        for future in self.pending_responses.values():
            if not future.done():
                future.set_exception(CDPConnectionError(reason))
        self.pending_responses.clear()

    async def _send_command(self, cmd_id: int, method: str, params: dict | None) -> None:
        if not self.ws:
            raise CDPConnectionError("WebSocket not connected")

        domain_name = method.split(".")[0] if "." in method else None
        if domain_name in self.PAGE_LEVEL_DOMAINS and not self.page_session_id:
            logger.warning(
                "⚠️ Sending page-level command %s without sessionId (may fail). "
                "SessionId should be obtained via Target.attachToTarget first.",
                method,
            )

        msg: dict[str, Any] = {
            "id": cmd_id,
            "method": method,
            "params": params or {},
        }
        if self.page_session_id:
            msg["sessionId"] = self.page_session_id

        await self.ws.send(json.dumps(msg))


    # Public methods _______________________________________________________________________________________________________

    async def enable_domain(
        self,
        domain: str,
        params: dict | None = None,
        timeout: float = 2.0,
    ) -> None:
        """
        Enable a CDP domain idempotently (skip if already enabled).
        Args:
            domain: The CDP domain name (e.g., "Page", "Runtime").
            params: Optional parameters for the enable command.
            timeout: Timeout in seconds.
        """
        if domain in self._enabled_domains:
            logger.debug("⏭️ Domain %s already enabled, skipping", domain)
            return

        try:
            await self.send_and_wait(method=f"{domain}.enable", params=params, timeout=timeout)
            self._enabled_domains.add(domain)
            logger.debug("✅ Domain %s enabled", domain)
        except (CDPConnectionError, TimeoutError) as e:
            logger.warning("⚠️ Failed to enable domain %s: %s", domain, e)

    async def send(self, method: str, params: dict | None = None) -> int:
        """
        Send CDP command and return sequence ID.
        Args:
            method (str): The CDP method to send. For example, "Runtime.addBinding".
            params (dict | None): The parameters to send with the command.
        Returns:
            int: The sequence ID of the command.
        """
        self.seq += 1
        cmd_id = self.seq
        await self._send_command(cmd_id, method, params)
        return cmd_id

    async def send_and_wait(
        self,
        method: str,
        params: dict | None = None,
        timeout: float = 10.0,
    ) -> dict | None:
        """
        Send CDP command and wait for response asynchronously.
        Args:
            method: The CDP method to send.
            params: The parameters to send with the command.
            timeout: Timeout in seconds.
        Returns:
            The result from the CDP command.
        Raises:
            CDPConnectionError: If the command returned an error.
            TimeoutError: If no reply arrived in time.
        """
        self.seq += 1
        cmd_id = self.seq

        # register the future before sending so a fast reply cannot be missed
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.pending_responses[cmd_id] = future
        try:
            await self._send_command(cmd_id, method, params)
            return await asyncio.wait_for(fut=future, timeout=timeout)
        except asyncio.TimeoutError:
            self.pending_responses.pop(cmd_id, None)
            raise TimeoutError(f"CDP command {method} timed out after {timeout} seconds")
        except Exception:
            self.pending_responses.pop(cmd_id, None)
            raise

    async def setup_cdp(self) -> None:
        """Setup CDP domains and network activity monitoring."""
        logger.info("🔧 Setting up CDP domains...")

        # sets self.page_session_id (must come from this same WebSocket connection)
        await self._get_ws_cdp_session_id()

        await self.enable_domain("Page")
        await self.enable_domain("Runtime")

        if self.capture_initial_navigation:
            current_url = await self.get_current_url()
            if current_url:
                self.engine.on_navigation_start(url=current_url)
                if await self.get_document_ready_state() == "complete":
                    self.engine.on_navigation_finished()

        await self.network_activity_monitor.setup_network_activity_monitoring(self)
        logger.info("✅ CDP domain setup complete")

    async def get_current_url(self, timeout: float = 3.0) -> str | None:
        """
        Return the current page URL using CDP navigation history.
        Args:
            timeout: Timeout per CDP call.
        """
        try:
            browser_history = await self.send_and_wait(method="Page.getNavigationHistory", timeout=timeout)
        except (CDPConnectionError, TimeoutError) as e:
            logger.debug("⚠️ Failed to get current URL: %s", e)
            return None
        if not browser_history:
            return None
        current_index = browser_history.get("currentIndex", 0)
        entries = browser_history.get("entries", [])
        if 0 <= current_index < len(entries):
            return entries[current_index].get("url")
        return None

    async def get_document_ready_state(self, timeout: float = 3.0) -> str | None:
        """Return `document.readyState` of the attached page, or None if it cannot be read."""
        try:
            eval_result = await self.send_and_wait(
                method="Runtime.evaluate",
                params={"expression": "document.readyState", "returnByValue": True},
                timeout=timeout,
            )
        except (CDPConnectionError, TimeoutError) as e:
            logger.debug("⚠️ Failed to read document.readyState: %s", e)
            return None
        if isinstance(eval_result, dict):
            return eval_result.get("result", {}).get("value")
        return None

    async def handle_message(self, msg: dict) -> None:
        """Handle incoming CDP message."""
        method = msg.get("method")

        # capture sessionId from Target.attachedToTarget (needed for page-level domains)
        if method == "Target.attachedToTarget":
            params = msg.get("params", {})
            captured_session_id = params.get("sessionId")
            target_type = params.get("targetInfo", {}).get("type", "unknown")
            if captured_session_id and target_type == "page" and not self.page_session_id:
                self.page_session_id = captured_session_id
                logger.info("🎯 Captured page sessionId: %s", self.page_session_id)

        # handle network activity via AsyncNetworkActivityMonitor
        handled = await self.network_activity_monitor.handle_activity_message(msg, self)
        if handled:
            return

        # handle command replies
        if "id" in msg:
            self._handle_command_reply(msg)

    async def run(self) -> None:
        """Main message processing loop."""
        logger.info("🔌 Connecting to CDP: %s", self.ws_url)
        async with connect(uri=self.ws_url, max_size=None) as ws:
            self.ws = ws
            logger.info("✅ WebSocket connected")

            message_count = 0

            async def message_receiver() -> None:
                """Receive and process WebSocket messages."""
                nonlocal message_count
                try:
                    async for message in ws:
                        message_count += 1
                        if message_count % 500 == 0:
                            logger.info("📊 Processed %d messages total", message_count)
                        try:
                            await self.handle_message(json.loads(message))
                        except Exception as e:
                            logger.error("❌ Error handling message #%d: %s", message_count, e, exc_info=True)
                            logger.error("❌ Message was: %s", str(message)[:250])
                except asyncio.CancelledError:
                    logger.info("🛑 Message receiver cancelled (processed %d messages)", message_count)
                    raise
                finally:
                    self._fail_pending_responses("WebSocket connection closed")

            # start message receiver BEFORE setup_cdp so command replies can be received
            receiver_task = asyncio.create_task(coro=message_receiver())
            await asyncio.sleep(0)

            try:
                await self.setup_cdp()
                logger.info("✅ CDP setup complete, message loop running")
                await receiver_task
            except asyncio.CancelledError:
                logger.info("🛑 Session cancelled (processed %d messages)", message_count)
                receiver_task.cancel()
                try:
                    await receiver_task
                except asyncio.CancelledError:
                    pass
                raise
            finally:
                if not receiver_task.done():
                    receiver_task.cancel()
                await self.network_activity_monitor.stop(drain=True)
                self.ws = None

    def get_monitoring_summary(self) -> dict[str, Any]:
        """
        Get summary of all monitoring activities.
        """
        return {
            "network_activity": self.network_activity_monitor.get_activity_summary(),
        }
