"""
pagetap/engine/handlers.py

Per-family protocol handlers: turn a decoded event into a transition on a NetworkRecord.

Phase policy (roles come from pagetap.instrumentation.contract):
- start: always create a new record and bind its key (last start wins)
- data: look the key up; ignore on miss; merge into protocol_state
- terminal: look the key up; fix status/duration; retire the key for connection-oriented families
- start_terminal: passive resources are created already complete and never routed
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Iterable

from pagetap.config import Config
from pagetap.data_models.enums import ProtocolFamily
from pagetap.data_models.events import (
    BaseInstrumentationEvent,
    EventSourceEvent,
    FetchEvent,
    ResourceEvent,
    WebRTCEvent,
    WebSocketEvent,
    XhrEvent,
)
from pagetap.data_models.network import HandlerOutcome, NetworkRecord, datetime_from_millis
from pagetap.engine.correlation_table import CorrelationTable
from pagetap.engine.history_store import HistoryStore
from pagetap.instrumentation.contract import phase_role
from pagetap.utils.logger import get_logger
from pagetap.utils.network_utils import normalize_headers, truncate_text, utf8_size

logger = get_logger(name=__name__)

# EventSource.readyState while the browser is auto-reconnecting
EVENTSOURCE_CONNECTING = 0


class AbstractProtocolHandler(ABC):
    """
    Abstract base class for protocol handlers.
    Every concrete handler declares the FAMILY it serves and is registered automatically.
    """

    # Class attributes _____________________________________________________________________________________________________

    FAMILY: ClassVar[ProtocolFamily]
    _registry: ClassVar[dict[ProtocolFamily, type[AbstractProtocolHandler]]] = {}
    _shared_instances: ClassVar[dict[ProtocolFamily, AbstractProtocolHandler]] = {}


    # Magic methods ________________________________________________________________________________________________________

    def __init_subclass__(cls: type[AbstractProtocolHandler], **kwargs: Any) -> None:
        """
        Register the subclass under its FAMILY when the subclass is defined.
        """
        super().__init_subclass__(**kwargs)
        family = cls.__dict__.get("FAMILY")
        if family is not None:
            cls._registry[family] = cls

    def __init__(self, body_max_chars: int | None = None) -> None:
        """
        Initialize the handler.
        Args:
            body_max_chars: Truncation limit for bodies and message payloads (defaults to Config.BODY_MAX_CHARS).
        """
        self.body_max_chars = body_max_chars if body_max_chars is not None else Config.BODY_MAX_CHARS


    # Class methods ________________________________________________________________________________________________________

    @classmethod
    def get_all_handler_classes(cls) -> dict[ProtocolFamily, type[AbstractProtocolHandler]]:
        """
        Return a copy of the family -> handler class registry.
        """
        return cls._registry.copy()

    @classmethod
    def build_handlers(cls, body_max_chars: int | None = None) -> dict[ProtocolFamily, AbstractProtocolHandler]:
        """
        Instantiate one handler per registered family.
        """
        return {
            family: handler_cls(body_max_chars=body_max_chars)
            for family, handler_cls in cls._registry.items()
        }


    # Private methods ______________________________________________________________________________________________________

    def _truncate(self, value: Any) -> str | None:
        return truncate_text(value, self.body_max_chars)

    @staticmethod
    def _payload_size(data_size: int | None, data: Any) -> int:
        """Reported payload size, or the UTF-8 size of the untruncated payload when the page sent none."""
        if data_size is not None:
            return data_size
        if data is None:
            return 0
        return utf8_size(data if isinstance(data, str) else str(data))

    @staticmethod
    def _duration_seconds(record: NetworkRecord, event: BaseInstrumentationEvent) -> float:
        """Page-measured duration (ms) if the event carries one, otherwise elapsed time since creation."""
        duration_ms = getattr(event, "duration", None)
        if duration_ms is not None:
            return max(0.0, duration_ms / 1000.0)
        return record.seconds_since_created(event.timestamp_millis)

    def _touch(
        self,
        record: NetworkRecord,
        table: CorrelationTable,
        store: HistoryStore,
    ) -> list[int]:
        """Re-insert an evicted but still-routable record at the tail of the store."""
        if record.id in store:
            return []
        logger.info("♻️ Re-inserting orphaned %s record %d (%s)", self.FAMILY, record.id, record.url)
        return append_to_history(record, table, store)


    # Abstract methods _____________________________________________________________________________________________________

    @abstractmethod
    def create_record(self, event: BaseInstrumentationEvent) -> NetworkRecord:
        """
        Build the record for a start (or start_terminal) event.
        """
        pass

    @abstractmethod
    def update_record(self, record: NetworkRecord, event: BaseInstrumentationEvent) -> bool:
        """
        Apply a data or terminal event to a live record.
        Returns:
            True if the event ended the flow.
        """
        pass


    # Public methods _______________________________________________________________________________________________________

    def apply(
        self,
        event: BaseInstrumentationEvent,
        table: CorrelationTable,
        store: HistoryStore,
    ) -> HandlerOutcome:
        """
        Apply one decoded event.
        Args:
            event: Decoded event of this handler's family.
            table: Correlation table of the current page load.
            store: History store.
        Returns:
            Created, Updated or Ignored outcome.
        """
        role = phase_role(self.FAMILY, event.phase)
        if role is None:
            return HandlerOutcome.ignored(f"unknown {self.FAMILY} phase {event.phase!r}")

        key = event.correlation_key

        if role == "start_terminal":
            record = self.create_record(event)
            return HandlerOutcome.created(record, released_ids=append_to_history(record, table, store))

        if role == "start":
            if table.is_retired(key):
                return HandlerOutcome.ignored("retired correlation key")
            record = self.create_record(event)
            released: list[int] = []
            abandoned_id = table.bind(key, record)
            if abandoned_id is not None:
                released.append(abandoned_id)
            released.extend(append_to_history(record, table, store))
            return HandlerOutcome.created(record, released_ids=released)

        record = table.lookup(key)
        if record is None:
            if table.is_retired(key):
                return HandlerOutcome.ignored("retired correlation key")
            return HandlerOutcome.ignored("unknown correlation key")
        if record.completed:
            return HandlerOutcome.ignored("flow already completed")

        ended = self.update_record(record, event)
        released = self._touch(record, table, store)
        if ended and self.FAMILY.is_connection_oriented:
            retired_id = table.retire(key)
            if retired_id is not None:
                released.append(retired_id)
        return HandlerOutcome.updated(record, released_ids=released)


def append_to_history(
    record: NetworkRecord,
    table: CorrelationTable,
    store: HistoryStore,
) -> list[int]:
    """
    Append `record` to the store and release evicted records that can no longer be updated.
    Evicted records that are still live stay routable (they are re-inserted on their next update).
    Returns:
        Ids of the evicted records that became unroutable.
    """
    return release_unroutable(store.append(record), table)


def release_unroutable(records: Iterable[NetworkRecord], table: CorrelationTable) -> list[int]:
    """
    Release the routing of records that just left the history and can no longer be updated.
    Returns:
        Ids of the released records.
    """
    released: list[int] = []
    for record in records:
        if record.completed or not table.is_routable(record.id):
            table.release(record.id)
            released.append(record.id)
        else:
            logger.debug("Record %d left the history while still routable", record.id)
    return released


def get_handler(family: ProtocolFamily | str) -> AbstractProtocolHandler:
    """
    Return the shared default-configured handler for `family`.
    Raises:
        KeyError: If no handler serves the family.
    """
    family = ProtocolFamily(family)
    if family not in AbstractProtocolHandler._shared_instances:
        handler_cls = AbstractProtocolHandler.get_all_handler_classes()[family]
        AbstractProtocolHandler._shared_instances[family] = handler_cls()
    return AbstractProtocolHandler._shared_instances[family]


def _content_length(headers: dict[str, str]) -> int | None:
    for name, value in headers.items():
        if name.lower() == "content-length":
            try:
                return max(0, int(value))
            except ValueError:
                return None
    return None


## Request/response families

class FetchHandler(AbstractProtocolHandler):
    """
    Promise-based request: request -> response | error.
    """
    FAMILY = ProtocolFamily.FETCH

    def create_record(self, event: FetchEvent) -> NetworkRecord:
        return NetworkRecord(
            correlation_key=event.correlation_key,
            url=event.url,
            method=(event.method or "GET").upper(),
            protocol_family=self.FAMILY,
            created_at=datetime_from_millis(event.timestamp_millis),
            request_headers=normalize_headers(event.headers),
            request_body=self._truncate(event.body),
            protocol_state={"state": "pending"},
        )

    def update_record(self, record: NetworkRecord, event: FetchEvent) -> bool:
        if event.phase == "response":
            record.status = event.status or 0
            record.status_text = event.status_text
            record.response_headers = normalize_headers(event.headers)
            content_length = _content_length(record.response_headers)
            if content_length is not None:
                record.size_bytes = content_length
            record.protocol_state["state"] = "complete"
        else:
            record.status = 0
            record.error_text = event.error or "Network Error"
            record.protocol_state["state"] = "failed"
        record.finish(self._duration_seconds(record, event))
        return True


class XhrHandler(AbstractProtocolHandler):
    """
    Callback-based request: open -> send -> loadstart -> load | error.
    """
    FAMILY = ProtocolFamily.XHR

    def create_record(self, event: XhrEvent) -> NetworkRecord:
        return NetworkRecord(
            correlation_key=event.correlation_key,
            url=event.url,
            method=(event.method or "GET").upper(),
            protocol_family=self.FAMILY,
            created_at=datetime_from_millis(event.timestamp_millis),
            protocol_state={"state": "opened"},
        )

    def update_record(self, record: NetworkRecord, event: XhrEvent) -> bool:
        if event.phase == "send":
            record.request_body = self._truncate(event.data)
            record.protocol_state["state"] = "sent"
            return False
        if event.phase == "loadstart":
            record.protocol_state["state"] = "loading"
            return False

        if event.phase == "load":
            record.status = event.status or 0
            record.status_text = event.status_text
            record.response_headers = normalize_headers(event.response_headers)
            record.response_body = self._truncate(event.response_text) or ""
            content_length = _content_length(record.response_headers)
            record.size_bytes = (
                content_length if content_length is not None else utf8_size(record.response_body)
            )
            record.protocol_state["state"] = "complete"
        else:
            record.status = 0
            record.error_text = event.error or "Network Error"
            record.protocol_state["state"] = "failed"
        record.finish(self._duration_seconds(record, event))
        return True


## Connection families

class WebSocketHandler(AbstractProtocolHandler):
    """
    Persistent connection: connection -> open -> message/send(*) -> close | error.
    """
    FAMILY = ProtocolFamily.WEBSOCKET

    def create_record(self, event: WebSocketEvent) -> NetworkRecord:
        return NetworkRecord(
            correlation_key=event.correlation_key,
            url=event.url,
            method="WEBSOCKET",
            protocol_family=self.FAMILY,
            created_at=datetime_from_millis(event.timestamp_millis),
            status=101,  # protocol upgrade
            status_text="Switching Protocols",
            protocol_state={"state": "connecting", "protocols": event.protocols},
        )

    def update_record(self, record: NetworkRecord, event: WebSocketEvent) -> bool:
        state = record.protocol_state
        if event.phase == "open":
            state["state"] = "open"
            return False
        if event.phase == "message":
            record.add_bytes(self._payload_size(event.data_size, event.data))
            record.increment_state("messageCount")
            state["lastMessage"] = self._truncate(event.data)
            state["lastMessageType"] = event.data_type
            return False
        if event.phase == "send":
            record.add_bytes(self._payload_size(event.data_size, event.data))
            record.increment_state("sentMessageCount")
            state["lastSentMessage"] = self._truncate(event.data)
            return False

        if event.phase == "close":
            state["state"] = "closed"
            state["closeCode"] = event.code
            state["closeReason"] = event.reason
            state["wasClean"] = event.was_clean
        else:
            state["state"] = "error"
            record.status = 0
            record.error_text = "WebSocket error"
        record.finish(self._duration_seconds(record, event))
        return True


class EventSourceHandler(AbstractProtocolHandler):
    """
    Server-push stream: connection -> open -> message(*) -> error.
    An error while the browser is reconnecting (readyState CONNECTING) is progress, not an end.
    """
    FAMILY = ProtocolFamily.EVENTSOURCE

    def create_record(self, event: EventSourceEvent) -> NetworkRecord:
        return NetworkRecord(
            correlation_key=event.correlation_key,
            url=event.url,
            method="EVENTSOURCE",
            protocol_family=self.FAMILY,
            created_at=datetime_from_millis(event.timestamp_millis),
            status=200,
            protocol_state={"state": "connecting", "withCredentials": bool(event.with_credentials)},
        )

    def update_record(self, record: NetworkRecord, event: EventSourceEvent) -> bool:
        state = record.protocol_state
        if event.phase == "open":
            state["state"] = "open"
            return False
        if event.phase == "message":
            data = self._truncate(event.data)
            record.add_bytes(self._payload_size(event.data_size, event.data))
            record.increment_state("messageCount")
            state["lastMessage"] = data
            if event.last_event_id:
                state["lastEventId"] = event.last_event_id
            return False

        if event.ready_state == EVENTSOURCE_CONNECTING:
            state["state"] = "reconnecting"
            record.increment_state("reconnectCount")
            return False
        state["state"] = "error"
        record.status = 0
        record.error_text = "EventSource error"
        record.finish(self._duration_seconds(record, event))
        return True


class WebRTCHandler(AbstractProtocolHandler):
    """
    Peer connection: connection -> connectionStateChange(*) / iceConnectionStateChange(*) / dataChannelCreated(*).
    No terminal phase; the record stays routable until navigation.
    """
    FAMILY = ProtocolFamily.WEBRTC
    PEER_CONNECTION_URL = "webrtc://peer-connection"

    def create_record(self, event: WebRTCEvent) -> NetworkRecord:
        return NetworkRecord(
            correlation_key=event.correlation_key,
            url=event.url or self.PEER_CONNECTION_URL,
            method="WEBRTC",
            protocol_family=self.FAMILY,
            created_at=datetime_from_millis(event.timestamp_millis),
            status=200,
            protocol_state={"state": "new", "configuration": event.configuration},
        )

    def update_record(self, record: NetworkRecord, event: WebRTCEvent) -> bool:
        state = record.protocol_state
        if event.phase == "connectionStateChange":
            state["connectionState"] = event.connection_state
            if event.connection_state:
                state["state"] = event.connection_state
        elif event.phase == "iceConnectionStateChange":
            state["iceConnectionState"] = event.ice_connection_state
        else:
            record.increment_state("dataChannelCount")
            labels = state.setdefault("dataChannelLabels", [])
            labels.append(event.channel_label)
        return False


## Passive resources

class ResourceHandler(AbstractProtocolHandler):
    """
    Passive resource observed after it finished loading: created already complete.
    """
    FAMILY = ProtocolFamily.RESOURCE

    def create_record(self, event: ResourceEvent) -> NetworkRecord:
        record = NetworkRecord(
            url=event.url,
            method="GET",
            protocol_family=self.FAMILY,
            created_at=datetime_from_millis(event.timestamp_millis),
            status=200,
            status_text="OK",
            size_bytes=max(0, event.transfer_size or 0),
            protocol_state={
                "state": "loaded",
                "initiatorType": event.initiator_type,
                "encodedBodySize": event.encoded_body_size,
                "decodedBodySize": event.decoded_body_size,
            },
        )
        record.finish((event.duration or 0.0) / 1000.0)
        return record

    def update_record(self, record: NetworkRecord, event: ResourceEvent) -> bool:
        # resources have no follow-up phases
        return True
