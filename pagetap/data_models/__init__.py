"""
pagetap/data_models/__init__.py

Pydantic models for records, handler outcomes and instrumentation events.
"""

from pagetap.data_models.enums import OutcomeKind, ProtocolFamily, ResourceType, StatusClass
from pagetap.data_models.events import (
    BaseInstrumentationEvent,
    DebugEvent,
    EventSourceEvent,
    FetchEvent,
    InstrumentationEvent,
    ResourceEvent,
    WebRTCEvent,
    WebSocketEvent,
    XhrEvent,
)
from pagetap.data_models.network import HandlerOutcome, NetworkRecord

__all__ = [
    "BaseInstrumentationEvent",
    "DebugEvent",
    "EventSourceEvent",
    "FetchEvent",
    "HandlerOutcome",
    "InstrumentationEvent",
    "NetworkRecord",
    "OutcomeKind",
    "ProtocolFamily",
    "ResourceEvent",
    "ResourceType",
    "StatusClass",
    "WebRTCEvent",
    "WebSocketEvent",
    "XhrEvent",
]
