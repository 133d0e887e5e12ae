"""
pagetap/engine/correlation_engine.py

Network activity correlation engine: the single logical writer that owns the correlation table,
the history store and the notification bus.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any

from pagetap.data_models.enums import OutcomeKind, ProtocolFamily, ResourceType
from pagetap.data_models.events import DebugEvent
from pagetap.data_models.network import HandlerOutcome, NetworkRecord, datetime_from_millis
from pagetap.engine.correlation_table import CorrelationTable
from pagetap.engine.decoder import decode
from pagetap.engine.handlers import AbstractProtocolHandler, append_to_history, release_unroutable
from pagetap.engine.history_store import HistoryStore
from pagetap.engine.notification_bus import AbstractNetworkObserver, NotificationBus
from pagetap.utils.exceptions import DecodeError
from pagetap.utils.logger import get_logger
from pagetap.utils.network_utils import filter_records

logger = get_logger(name=__name__)


class NetworkCorrelationEngine:
    """
    Decode -> route -> handle -> store -> notify, serialized behind one lock.

    Every public method is safe to call from any thread; observers are notified synchronously
    while the lock is held, in event-arrival order, with snapshot copies of the records.
    Page input never makes a public method raise.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        capacity: int | None = None,
        eviction_batch_size: int | None = None,
        body_max_chars: int | None = None,
    ) -> None:
        """
        Initialize the NetworkCorrelationEngine.
        Args:
            capacity: History capacity N (defaults to Config.HISTORY_CAPACITY).
            eviction_batch_size: Eviction batch K (defaults to Config.EVICTION_BATCH_SIZE).
            body_max_chars: Truncation limit for captured bodies (defaults to Config.BODY_MAX_CHARS).
        Raises:
            InvalidHistoryConfigError: If the history settings are unusable.
        """
        self._lock = threading.RLock()
        self._store = HistoryStore(capacity=capacity, eviction_batch_size=eviction_batch_size)
        self._table = CorrelationTable()
        self._bus = NotificationBus()
        self._handlers = AbstractProtocolHandler.build_handlers(body_max_chars=body_max_chars)

        # record of the current top-level navigation (not routed through the table)
        self._navigation_record: NetworkRecord | None = None

        # statistics
        self.created_count: int = 0
        self.updated_count: int = 0
        self.ignored_count: int = 0
        self.decode_error_count: int = 0
        self.navigation_count: int = 0
        self.ignored_reasons: dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


    # Properties ___________________________________________________________________________________________________________

    @property
    def correlation_table(self) -> CorrelationTable:
        return self._table

    @property
    def history(self) -> HistoryStore:
        return self._store


    # Private methods ______________________________________________________________________________________________________

    def _count_ignored(self, reason: str) -> None:
        self.ignored_count += 1
        self.ignored_reasons[reason] += 1

    def _ignore(self, reason: str) -> HandlerOutcome:
        self._count_ignored(reason)
        return HandlerOutcome.ignored(reason)

    def _forget(self, record_ids: list[int]) -> None:
        """Drop notification bookkeeping for records that can never be updated again."""
        navigation_id = self._navigation_record.id if self._navigation_record else None
        self._bus.forget(record_id for record_id in record_ids if record_id != navigation_id)

    def _append_untracked(self, record: NetworkRecord) -> None:
        """Append a record that is not routed through the correlation table."""
        self._forget(append_to_history(record, self._table, self._store))

    def _dispatch(self, outcome: HandlerOutcome) -> None:
        if outcome.kind == OutcomeKind.CREATED:
            self.created_count += 1
            self._bus.publish_captured(outcome.record)
        else:
            self.updated_count += 1
            self._bus.publish_updated(outcome.record)
        if outcome.released_ids:
            self._forget(outcome.released_ids)


    # Public methods _______________________________________________________________________________________________________

    def process(self, raw_payload: str | bytes | dict[str, Any]) -> HandlerOutcome:
        """
        Process one opaque notification from the instrumented page.
        Args:
            raw_payload: Runtime.bindingCalled payload (JSON string) or a parsed mapping.
        Returns:
            The handler outcome (Ignored for undecodable, diagnostic or unroutable events).
        """
        with self._lock:
            try:
                family, event = decode(raw_payload)
            except DecodeError as e:
                self.decode_error_count += 1
                logger.warning("⚠️ Dropping undecodable notification: %s", e)
                return self._ignore("decode error")

            if isinstance(event, DebugEvent):
                logger.info("🔧 Instrumentation %s: %s", event.phase, event.message or "")
                return self._ignore("diagnostic event")

            handler = self._handlers.get(ProtocolFamily(family))
            if handler is None:
                logger.warning("⚠️ No handler for family %s", family)
                return self._ignore("unhandled family")

            try:
                outcome = handler.apply(event, self._table, self._store)
            except Exception as e:
                logger.error("❌ %s failed on %s/%s: %s", type(handler).__name__, family, event.phase, e, exc_info=True)
                return self._ignore("handler error")

            if outcome.is_ignored:
                logger.debug(
                    "Ignored %s/%s for key %s: %s", family, event.phase, event.correlation_key, outcome.reason,
                )
                self._count_ignored(outcome.reason or "unknown")
                return outcome

            self._dispatch(outcome)
            return outcome

    def snapshot(self) -> list[NetworkRecord]:
        """Immutable copies of the history in insertion order."""
        with self._lock:
            return self._store.snapshot()

    def get_record(self, record_id: int) -> NetworkRecord | None:
        """Copy of one record still in the history, or None."""
        with self._lock:
            record = self._store.get(record_id)
            return record.model_copy(deep=True) if record else None

    def on_navigation_start(self, url: str | None = None, method: str = "GET") -> NetworkRecord | None:
        """
        Signal a new top-level navigation: correlation keys of the previous page become meaningless.
        Args:
            url: URL being navigated to; if given, a navigation record is captured.
            method: HTTP method of the navigation.
        Returns:
            The navigation record (a copy), or None if no URL was given.
        """
        with self._lock:
            dropped = self._table.clear()
            self._bus.forget(dropped)
            if self._navigation_record is not None:
                self._bus.forget([self._navigation_record.id])
            self._navigation_record = None
            self.navigation_count += 1
            logger.info("🧭 Navigation started (%s); dropped %d routable records", url or "unknown url", len(dropped))

            if not url:
                return None

            record = NetworkRecord(
                url=url,
                method=method.upper(),
                protocol_family=ProtocolFamily.NAVIGATION,
                protocol_state={"state": "loading"},
            )
            self._navigation_record = record
            self._append_untracked(record)
            self.created_count += 1
            self._bus.publish_captured(record)
            return record.model_copy(deep=True)

    def on_navigation_finished(self, timestamp_millis: float | None = None) -> NetworkRecord | None:
        """
        Signal that the current top-level navigation finished loading.
        Args:
            timestamp_millis: Load time (ms since epoch); now if omitted.
        Returns:
            The completed navigation record (a copy), or None if there is no pending navigation.
        """
        with self._lock:
            record = self._navigation_record
            if record is None or record.completed:
                return None

            finished_at = datetime_from_millis(timestamp_millis)
            record.status = 200
            record.status_text = "OK"
            record.protocol_state["state"] = "loaded"
            record.finish((finished_at - record.created_at).total_seconds())
            if record.id not in self._store:
                self._append_untracked(record)
            self.updated_count += 1
            self._bus.publish_updated(record)
            logger.info("✅ Navigation loaded in %s: %s", record.formatted_duration, record.url)
            return record.model_copy(deep=True)

    def clear(self) -> int:
        """
        Clear the history (user action). Live records keep receiving events and re-appear on update;
        finished ones are released from routing like evicted records.
        Returns:
            The number of records removed.
        """
        with self._lock:
            cleared = list(self._store)
            removed = self._store.clear()
            self._forget(release_unroutable(cleared, self._table))
            logger.info("🗑️ Cleared %d records from history", removed)
            return removed

    def subscribe(self, observer: AbstractNetworkObserver) -> None:
        with self._lock:
            self._bus.subscribe(observer)

    def unsubscribe(self, observer: AbstractNetworkObserver) -> None:
        with self._lock:
            self._bus.unsubscribe(observer)

    def search(self, text: str = "", resource_type: ResourceType | None = None) -> list[NetworkRecord]:
        """
        Filter a snapshot of the history.
        Args:
            text: Case-insensitive match on URL or method, or a substring of the status code.
            resource_type: Keep only this resource type.
        Returns:
            Matching record copies in insertion order.
        """
        return filter_records(self.snapshot(), text=text, resource_type_filter=resource_type)

    def stats(self) -> dict[str, Any]:
        """
        Get summary of engine activity.
        """
        with self._lock:
            records = list(self._store)
            by_family: dict[str, int] = defaultdict(int)
            by_status_class: dict[str, int] = defaultdict(int)
            total_bytes = 0
            for record in records:
                by_family[record.protocol_family.value] += 1
                by_status_class[record.status_class.value] += 1
                total_bytes += record.size_bytes
            return {
                "history_length": len(records),
                "history_capacity": self._store.capacity,
                "evicted": self._store.evicted_count,
                "routable_keys": len(self._table),
                "created": self.created_count,
                "updated": self.updated_count,
                "ignored": self.ignored_count,
                "ignored_reasons": dict(self.ignored_reasons),
                "decode_errors": self.decode_error_count,
                "navigations": self.navigation_count,
                "records_by_family": dict(by_family),
                "records_by_status_class": dict(by_status_class),
                "total_bytes": total_bytes,
            }
