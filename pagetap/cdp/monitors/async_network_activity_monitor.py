"""
pagetap/cdp/monitors/async_network_activity_monitor.py

Async network activity monitor for CDP.
Receives instrumentation notifications through a runtime binding and feeds them,
in arrival order, to a NetworkCorrelationEngine from a single worker task.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from pagetap.config import Config
from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.utils.js_utils import generate_network_instrumentation_js
from pagetap.utils.logger import get_logger

if TYPE_CHECKING:
    from pagetap.cdp.async_cdp_session import AsyncCDPSession

logger = get_logger(name=__name__)


class AsyncNetworkActivityMonitor:
    """
    Async network activity monitor for CDP.

    Binding payloads and main-frame lifecycle signals share one bounded FIFO queue so that
    per-key order and navigation order are preserved. The queue is drained by exactly one worker.
    When the queue is full the item is dropped: the page never waits for the host.
    """

    # Queue item kinds
    NOTIFICATION = "notification"
    NAVIGATION_STARTED = "navigation_started"
    NAVIGATION_FINISHED = "navigation_finished"


    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        engine: NetworkCorrelationEngine,
        binding_name: str | None = None,
        queue_max_size: int | None = None,
        body_max_chars: int | None = None,
    ) -> None:
        """
        Initialize AsyncNetworkActivityMonitor.
        Args:
            engine: The correlation engine notifications are applied to.
            binding_name: Runtime binding the injected script posts to (defaults to Config.BINDING_NAME).
            queue_max_size: Bound of the inbound queue (defaults to Config.QUEUE_MAX_SIZE).
            body_max_chars: Page-side truncation limit passed to the injected script.
        """
        self.engine = engine
        self.binding_name = binding_name or Config.BINDING_NAME
        self.body_max_chars = body_max_chars if body_max_chars is not None else Config.BODY_MAX_CHARS
        self.queue_max_size = queue_max_size if queue_max_size is not None else Config.QUEUE_MAX_SIZE

        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=self.queue_max_size)
        self._worker_task: asyncio.Task | None = None

        # statistics tracking
        self.received_count: int = 0
        self.processed_count: int = 0
        self.dropped_notifications: int = 0
        self.processed_by_kind: dict[str, int] = defaultdict(int)


    # Properties ___________________________________________________________________________________________________________

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()


    # Private methods ______________________________________________________________________________________________________

    def _enqueue(self, kind: str, value: Any) -> bool:
        """Put an item on the queue without waiting; drop it if the queue is full."""
        try:
            self._queue.put_nowait((kind, value))
            return True
        except asyncio.QueueFull:
            self.dropped_notifications += 1
            logger.warning(
                "⚠️ Notification queue full (%d items); dropped %s (%d dropped so far)",
                self.queue_max_size, kind, self.dropped_notifications,
            )
            return False

    def _process_item(self, kind: str, value: Any) -> None:
        if kind == self.NOTIFICATION:
            self.engine.process(value)
        elif kind == self.NAVIGATION_STARTED:
            self.engine.on_navigation_start(url=value)
        elif kind == self.NAVIGATION_FINISHED:
            self.engine.on_navigation_finished()
        else:
            logger.warning("⚠️ Unknown queue item kind: %s", kind)
            return
        self.processed_count += 1
        self.processed_by_kind[kind] += 1

    async def _worker(self) -> None:
        """Drain the queue forever (single consumer)."""
        while True:
            kind, value = await self._queue.get()
            try:
                self._process_item(kind, value)
            except Exception as e:
                logger.error("❌ Error processing %s item: %s", kind, e, exc_info=True)
            finally:
                self._queue.task_done()

    async def _inject_instrumentation(self, cdp_session: AsyncCDPSession) -> None:
        """Inject the instrumentation script for future documents and the current one."""
        script = generate_network_instrumentation_js(
            binding_name=self.binding_name,
            body_max_chars=self.body_max_chars,
        )
        try:
            # inject for all future documents
            await cdp_session.send_and_wait(
                method="Page.addScriptToEvaluateOnNewDocument",
                params={"source": script},
            )
            # inject for current page (idempotent install flag inside the script)
            await cdp_session.send(
                method="Runtime.evaluate",
                params={"expression": script, "includeCommandLineAPI": False},
            )
            logger.info("✅ Network instrumentation script injected")
        except Exception as e:
            logger.warning("⚠️ Failed to inject network instrumentation script: %s", e)


    # Public methods _______________________________________________________________________________________________________

    def start(self) -> None:
        """Start the worker task (idempotent). Must be called from a running event loop."""
        if self.is_running:
            return
        self._worker_task = asyncio.create_task(coro=self._worker())
        logger.debug("Network activity worker started")

    async def join(self) -> None:
        """Wait until every queued item has been processed."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """
        Stop the worker task.
        Args:
            drain: Process everything already queued before stopping.
        """
        if self.is_running and drain:
            await self.join()
        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        logger.info("🛑 Network activity monitor stopped (%d processed, %d dropped)",
                    self.processed_count, self.dropped_notifications)

    async def setup_network_activity_monitoring(self, cdp_session: AsyncCDPSession) -> None:
        """Setup network activity monitoring via CDP session."""
        logger.info("🔧 Setting up network activity monitoring...")

        # enable required domains
        await cdp_session.enable_domain("Runtime")
        await cdp_session.enable_domain("Page")

        # create binding for JavaScript to call
        await cdp_session.send_and_wait(method="Runtime.addBinding", params={"name": self.binding_name})

        self.start()
        await self._inject_instrumentation(cdp_session)

        logger.info("✅ Network activity monitoring setup complete")

    async def handle_activity_message(self, msg: dict, cdp_session: AsyncCDPSession | None = None) -> bool:
        """
        Handle network-activity-related CDP messages.
        Returns True if handled (swallowed), False otherwise.
        """
        method = msg.get("method")
        params = msg.get("params", {})

        if method == "Runtime.bindingCalled":
            if params.get("name") != self.binding_name:
                return False
            self.received_count += 1
            self._enqueue(self.NOTIFICATION, params.get("payload", ""))
            return True

        # main-frame navigation: keys minted by the previous document are meaningless
        if method == "Page.frameNavigated":
            frame = params.get("frame", {})
            if not frame.get("parentId"):
                self._enqueue(self.NAVIGATION_STARTED, frame.get("url"))
            return False  # don't swallow

        if method == "Page.loadEventFired":
            self._enqueue(self.NAVIGATION_FINISHED, None)
            return False

        return False

    def get_activity_summary(self) -> dict[str, Any]:
        """Get summary of network activity monitoring."""
        return {
            "notifications_received": self.received_count,
            "items_processed": self.processed_count,
            "items_processed_by_kind": dict(self.processed_by_kind),
            "notifications_dropped": self.dropped_notifications,
            "queue_pending": self.pending_count,
            "engine": self.engine.stats(),
        }
