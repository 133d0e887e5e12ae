"""
pagetap/data_models/events.py

Typed instrumentation events posted by the injected page script.

Every notification is a flat JSON object with at minimum
`{family, phase, correlationKey, timestampMillis}` plus family-specific fields.
Wire names are camelCase; snake_case field names are accepted as well.
"""

from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


## Base event

class BaseInstrumentationEvent(BaseModel):
    """
    Base model for all notifications emitted by the instrumentation script.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    # phases whose payload must carry a URL
    URL_REQUIRED_PHASES: ClassVar[frozenset[str]] = frozenset()

    family: str
    phase: str
    correlation_key: str = Field(
        ...,
        min_length=1,
        description="Identifier minted by the page script, unique per logical flow within one page load",
    )
    timestamp_millis: float = Field(
        ...,
        description="Page-side `Date.now()` when the event was posted",
    )
    url: str | None = Field(
        default=None,
        description="Flow URL (start phases only)",
    )

    @model_validator(mode="after")
    def _check_url_present(self) -> "BaseInstrumentationEvent":
        if self.phase in self.URL_REQUIRED_PHASES and not self.url:
            raise ValueError(f"{self.family}/{self.phase} event requires a url")
        return self


## Request/response families

class FetchEvent(BaseInstrumentationEvent):
    """
    Promise-based request (window.fetch): request -> response | error.
    """
    URL_REQUIRED_PHASES: ClassVar[frozenset[str]] = frozenset({"request"})

    family: Literal["fetch"]
    phase: Literal["request", "response", "error"]
    method: str | None = None
    headers: Any = None
    body: Any = None
    status: int | None = None
    status_text: str | None = None
    duration: float | None = Field(
        default=None,
        description="Milliseconds between request and response/error",
    )
    error: str | None = None


class XhrEvent(BaseInstrumentationEvent):
    """
    Callback-based request (XMLHttpRequest): open -> send -> load | error.
    """
    URL_REQUIRED_PHASES: ClassVar[frozenset[str]] = frozenset({"open"})

    family: Literal["xhr"]
    phase: Literal["open", "send", "loadstart", "load", "error"]
    method: str | None = None
    data: Any = None
    status: int | None = None
    status_text: str | None = None
    response_headers: Any = Field(
        default=None,
        description="Raw CRLF header block from getAllResponseHeaders(), or a mapping",
    )
    response_text: Any = None
    duration: float | None = None
    error: str | None = None


## Connection families

class WebSocketEvent(BaseInstrumentationEvent):
    """
    Persistent bidirectional connection: connection -> open -> message(*) -> close | error.
    Outbound frames are reported as `send`.
    """
    URL_REQUIRED_PHASES: ClassVar[frozenset[str]] = frozenset({"connection"})

    family: Literal["websocket"]
    phase: Literal["connection", "open", "message", "send", "close", "error"]
    protocols: Any = None
    data: Any = None
    data_type: str | None = None
    data_size: int | None = Field(
        default=None,
        description="Payload size in bytes as measured by the page",
    )
    code: int | None = None
    reason: str | None = None
    was_clean: bool | None = None


class EventSourceEvent(BaseInstrumentationEvent):
    """
    Server-push stream: connection -> open -> message(*) -> error.
    """
    URL_REQUIRED_PHASES: ClassVar[frozenset[str]] = frozenset({"connection"})

    family: Literal["eventsource"]
    phase: Literal["connection", "open", "message", "error"]
    with_credentials: bool | None = None
    data: Any = None
    data_size: int | None = None
    last_event_id: str | None = None
    origin: str | None = None
    ready_state: int | None = Field(
        default=None,
        description="EventSource.readyState at the time of an error (0 connecting, 1 open, 2 closed)",
    )


class WebRTCEvent(BaseInstrumentationEvent):
    """
    Peer connection: connection -> connectionStateChange(*) / dataChannelCreated(*).
    """
    family: Literal["webrtc"]
    phase: Literal["connection", "connectionStateChange", "iceConnectionStateChange", "dataChannelCreated"]
    configuration: Any = None
    connection_state: str | None = None
    ice_connection_state: str | None = None
    channel_label: str | None = None
    channel_id: int | None = None
    channel_origin: Literal["local", "remote"] | None = None


## Passive resources

class ResourceEvent(BaseInstrumentationEvent):
    """
    Completed resource fetch the page did not explicitly initiate (PerformanceObserver entry).
    """
    URL_REQUIRED_PHASES: ClassVar[frozenset[str]] = frozenset({"load"})

    family: Literal["resource"]
    phase: Literal["load"]
    initiator_type: str | None = None
    duration: float | None = None
    transfer_size: int | None = None
    encoded_body_size: int | None = None
    decoded_body_size: int | None = None


## Diagnostics

class DebugEvent(BaseInstrumentationEvent):
    """
    Diagnostic notification from the script itself (e.g. `initialized`).
    """
    family: Literal["debug"]
    phase: str
    correlation_key: str | None = None  # type: ignore[assignment]
    message: str | None = None


InstrumentationEvent = Annotated[
    Union[
        FetchEvent,
        XhrEvent,
        WebSocketEvent,
        EventSourceEvent,
        WebRTCEvent,
        ResourceEvent,
        DebugEvent,
    ],
    Field(discriminator="family"),
]
