"""
pagetap/data_models/enums.py

Enumerations shared across records, events and classification helpers.
"""

from enum import StrEnum


class ProtocolFamily(StrEnum):
    """
    Category of network-producing call a record was captured from.
    """
    FETCH = "fetch"  # promise-based request/response
    XHR = "xhr"  # callback-based request/response
    WEBSOCKET = "websocket"  # persistent bidirectional connection
    EVENTSOURCE = "eventsource"  # server-push stream
    WEBRTC = "webrtc"  # peer connection
    NAVIGATION = "navigation"  # top-level page load reported by the host
    RESOURCE = "resource"  # passively-loaded resource

    @property
    def is_connection_oriented(self) -> bool:
        """Whether records of this family represent a long-lived connection."""
        return self in _CONNECTION_FAMILIES


_CONNECTION_FAMILIES = frozenset({
    ProtocolFamily.WEBSOCKET,
    ProtocolFamily.EVENTSOURCE,
    ProtocolFamily.WEBRTC,
})


class ResourceType(StrEnum):
    """
    Display category of a record, derived from its family or URL extension.
    """
    DOCUMENT = "document"
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    FONT = "font"
    XHR = "xhr"
    MEDIA = "media"
    WEBSOCKET = "websocket"
    EVENTSOURCE = "eventsource"
    WEBRTC = "webrtc"
    OTHER = "other"

    @property
    def label(self) -> str:
        """Short column label used by list views."""
        return _RESOURCE_TYPE_LABELS[self]


_RESOURCE_TYPE_LABELS = {
    ResourceType.DOCUMENT: "Doc",
    ResourceType.STYLESHEET: "CSS",
    ResourceType.SCRIPT: "JS",
    ResourceType.IMAGE: "Img",
    ResourceType.FONT: "Font",
    ResourceType.XHR: "XHR",
    ResourceType.MEDIA: "Media",
    ResourceType.WEBSOCKET: "WS",
    ResourceType.EVENTSOURCE: "SSE",
    ResourceType.WEBRTC: "RTC",
    ResourceType.OTHER: "Other",
}


class StatusClass(StrEnum):
    """
    Bucket of a transport status code.
    """
    PENDING = "pending"
    SUCCESS = "success"
    REDIRECT = "redirect"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"


class OutcomeKind(StrEnum):
    """
    What a protocol handler did with an event.
    """
    CREATED = "created"
    UPDATED = "updated"
    IGNORED = "ignored"
