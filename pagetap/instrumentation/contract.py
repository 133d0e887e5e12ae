"""
pagetap/instrumentation/contract.py

Declarative instrumentation contract: which scripting APIs the injected code must wrap,
which phases each family emits and what role each phase plays in a flow.

The injected script (see pagetap.utils.js_utils) and the protocol handlers both honor this table.
Correctness of correlation depends on one rule the engine cannot police: every correlationKey is
unique per logical flow for the lifetime of one page load.
"""

from typing import Literal

from pydantic import BaseModel, Field

from pagetap.data_models.enums import ProtocolFamily

PhaseRole = Literal["start", "data", "terminal", "start_terminal"]


class HookPoint(BaseModel):
    """
    One network-producing API the page script intercepts.
    """
    family: ProtocolFamily = Field(
        ...,
        description="Protocol family the hook reports as",
    )
    wraps: str = Field(
        ...,
        description="Scripting API that is wrapped",
        examples=["window.fetch", "window.WebSocket"],
    )
    start_phases: tuple[str, ...] = Field(
        default=(),
        description="Phases that create a record",
    )
    data_phases: tuple[str, ...] = Field(
        default=(),
        description="Phases that update a live record without ending it",
    )
    terminal_phases: tuple[str, ...] = Field(
        default=(),
        description="Phases after which status and duration are fixed",
    )
    start_terminal_phases: tuple[str, ...] = Field(
        default=(),
        description="Phases that create and complete a record in one event",
    )
    fields: tuple[str, ...] = Field(
        default=(),
        description="Family-specific wire fields beyond family/phase/correlationKey/timestampMillis",
    )

    @property
    def phases(self) -> tuple[str, ...]:
        """Every phase this hook can emit."""
        return self.start_phases + self.data_phases + self.terminal_phases + self.start_terminal_phases

    def role_of(self, phase: str) -> PhaseRole | None:
        """Role of a phase within this family, or None if the phase is not part of it."""
        if phase in self.start_phases:
            return "start"
        if phase in self.data_phases:
            return "data"
        if phase in self.terminal_phases:
            return "terminal"
        if phase in self.start_terminal_phases:
            return "start_terminal"
        return None


HOOK_POINTS: tuple[HookPoint, ...] = (
    HookPoint(
        family=ProtocolFamily.FETCH,
        wraps="window.fetch",
        start_phases=("request",),
        terminal_phases=("response", "error"),
        fields=("url", "method", "headers", "body", "status", "statusText", "duration", "error"),
    ),
    HookPoint(
        family=ProtocolFamily.XHR,
        wraps="window.XMLHttpRequest",
        start_phases=("open",),
        data_phases=("send", "loadstart"),
        terminal_phases=("load", "error"),
        fields=("url", "method", "data", "status", "statusText", "responseHeaders", "responseText", "duration"),
    ),
    HookPoint(
        family=ProtocolFamily.WEBSOCKET,
        wraps="window.WebSocket",
        start_phases=("connection",),
        data_phases=("open", "message", "send"),
        terminal_phases=("close", "error"),
        fields=("url", "protocols", "data", "dataType", "dataSize", "code", "reason", "wasClean"),
    ),
    HookPoint(
        family=ProtocolFamily.EVENTSOURCE,
        wraps="window.EventSource",
        start_phases=("connection",),
        data_phases=("open", "message"),
        terminal_phases=("error",),
        fields=("url", "withCredentials", "data", "dataSize", "lastEventId", "origin", "readyState"),
    ),
    HookPoint(
        family=ProtocolFamily.WEBRTC,
        wraps="window.RTCPeerConnection",
        start_phases=("connection",),
        data_phases=("connectionStateChange", "iceConnectionStateChange", "dataChannelCreated"),
        fields=(
            "configuration", "connectionState", "iceConnectionState",
            "channelLabel", "channelId", "channelOrigin",
        ),
    ),
    HookPoint(
        family=ProtocolFamily.RESOURCE,
        wraps="PerformanceObserver('resource')",
        start_terminal_phases=("load",),
        fields=("url", "initiatorType", "duration", "transferSize", "encodedBodySize", "decodedBodySize"),
    ),
)

_HOOKS_BY_FAMILY: dict[ProtocolFamily, HookPoint] = {hook.family: hook for hook in HOOK_POINTS}


def hook_point_for(family: ProtocolFamily | str) -> HookPoint | None:
    """Return the hook point of an instrumented family (None for navigation/unknown)."""
    try:
        return _HOOKS_BY_FAMILY.get(ProtocolFamily(family))
    except ValueError:
        return None


def phase_role(family: ProtocolFamily | str, phase: str) -> PhaseRole | None:
    """Role of `phase` within `family`, or None if either is unknown."""
    hook = hook_point_for(family)
    return hook.role_of(phase) if hook else None


def is_known_phase(family: ProtocolFamily | str, phase: str) -> bool:
    return phase_role(family, phase) is not None
