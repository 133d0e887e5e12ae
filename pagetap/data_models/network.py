"""
pagetap/data_models/network.py

Data models for correlated network records and handler outcomes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from itertools import count
from typing import Any

from pydantic import BaseModel, Field

from pagetap.data_models.enums import OutcomeKind, ProtocolFamily, ResourceType, StatusClass
from pagetap.utils import network_utils

# process-local record ids; never reused
_record_ids = count(start=1)


def next_record_id() -> int:
    """Mint the next process-local record id."""
    return next(_record_ids)


def datetime_from_millis(timestamp_millis: float | None) -> datetime:
    """Convert a JS `Date.now()` value to an aware UTC datetime (now if missing)."""
    if timestamp_millis is None:
        return datetime.now(tz=timezone.utc)
    return datetime.fromtimestamp(timestamp_millis / 1000.0, tz=timezone.utc)


class NetworkRecord(BaseModel):
    """
    Mutable state of one logical network flow (a request or a connection).
    Identity fields are frozen; everything else is filled in as events arrive.
    """
    id: int = Field(
        default_factory=next_record_id,
        frozen=True,
        description="Process-local unique identifier, never reused",
    )
    correlation_key: str | None = Field(
        default=None,
        frozen=True,
        description="Identifier minted by the instrumented page; None for passive resources and navigations",
    )
    url: str = Field(
        ...,
        frozen=True,
        description="The requested URL",
        examples=["https://example.com/a.json", "wss://example.com/socket"],
    )
    method: str = Field(
        ...,
        frozen=True,
        description="HTTP method, or a pseudo-method for connection families",
        examples=["GET", "POST", "WEBSOCKET", "EVENTSOURCE", "WEBRTC"],
    )
    protocol_family: ProtocolFamily = Field(
        ...,
        frozen=True,
        description="Instrumented call category the flow was captured from",
    )
    status: int = Field(
        default=0,
        description="Transport status code; 0 while pending or unknown",
        examples=[0, 101, 200, 404],
    )
    status_text: str | None = Field(
        default=None,
        description="Status text reported by the page",
    )
    request_headers: dict[str, str] = Field(default_factory=dict)
    response_headers: dict[str, str] = Field(default_factory=dict)
    request_body: str | None = Field(
        default=None,
        description="Request body (truncated)",
    )
    response_body: str = Field(
        default="",
        description="Response body (truncated)",
    )
    error_text: str | None = Field(
        default=None,
        description="Error message if the flow failed",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc),
        frozen=True,
        description="Timestamp of the first event of the flow",
    )
    duration_seconds: float = Field(
        default=0.0,
        description="Set once on the terminal event; 0 while pending",
    )
    size_bytes: int = Field(
        default=0,
        description="Accumulated for streaming families, set once for single-shot families",
    )
    protocol_state: dict[str, Any] = Field(
        default_factory=dict,
        description="Family-specific accumulated fields (messageCount, closeCode, connectionState, ...)",
    )
    completed: bool = Field(
        default=False,
        description="Whether a terminal event has been applied",
    )

    # Mutation helpers _____________________________________________________________________________________________________

    def finish(self, duration_seconds: float | None) -> bool:
        """
        Mark the record terminal and fix its duration.
        Args:
            duration_seconds: Elapsed time of the flow; None or negative values are stored as 0.
        Returns:
            True if this call completed the record, False if it was already completed.
        """
        if self.completed:
            return False
        self.duration_seconds = max(0.0, float(duration_seconds or 0.0))
        self.completed = True
        return True

    def add_bytes(self, num_bytes: int | None) -> None:
        """Accumulate transferred bytes; non-positive amounts are ignored."""
        if num_bytes and num_bytes > 0:
            self.size_bytes += int(num_bytes)

    def increment_state(self, key: str, by: int = 1) -> int:
        """Increment an integer counter in `protocol_state` and return the new value."""
        value = int(self.protocol_state.get(key, 0)) + by
        self.protocol_state[key] = value
        return value

    def seconds_since_created(self, timestamp_millis: float | None) -> float:
        """Elapsed seconds between creation and a later event timestamp (never negative)."""
        if timestamp_millis is None:
            return 0.0
        elapsed = datetime_from_millis(timestamp_millis) - self.created_at
        return max(0.0, elapsed.total_seconds())

    # Derived properties ___________________________________________________________________________________________________

    @property
    def resource_type(self) -> ResourceType:
        """Display category (family for connections, URL extension otherwise)."""
        return network_utils.resource_type(self)

    @property
    def status_class(self) -> StatusClass:
        """Status bucket."""
        return network_utils.status_class(self.status)

    @property
    def status_label(self) -> str:
        """Human-readable status."""
        return network_utils.status_label(self.status)

    @property
    def domain(self) -> str:
        """Host part of the URL."""
        return network_utils.get_host(self.url)

    @property
    def formatted_size(self) -> str:
        return network_utils.format_bytes(self.size_bytes)

    @property
    def formatted_duration(self) -> str:
        return network_utils.format_duration(self.duration_seconds)

    def summary(self) -> dict[str, Any]:
        """
        Lightweight summary of the record for list views and logs.
        """
        return {
            "id": self.id,
            "method": self.method,
            "url": self.url,
            "status": self.status,
            "resource_type": self.resource_type.value,
            "size": self.formatted_size,
            "duration": self.formatted_duration,
            "state": self.protocol_state.get("state"),
        }


class HandlerOutcome(BaseModel):
    """
    Result of applying one decoded event: a new record, a mutated record, or nothing.
    """
    kind: OutcomeKind = Field(
        ...,
        description="What the handler did",
    )
    record: NetworkRecord | None = Field(
        default=None,
        description="The created or updated record (None when ignored)",
    )
    reason: str | None = Field(
        default=None,
        description="Why the event was ignored",
    )
    released_ids: list[int] = Field(
        default_factory=list,
        description="Ids of records this event made unroutable (evicted, abandoned or retired)",
    )

    @classmethod
    def created(cls, record: NetworkRecord, released_ids: list[int] | None = None) -> HandlerOutcome:
        return cls(kind=OutcomeKind.CREATED, record=record, released_ids=released_ids or [])

    @classmethod
    def updated(cls, record: NetworkRecord, released_ids: list[int] | None = None) -> HandlerOutcome:
        return cls(kind=OutcomeKind.UPDATED, record=record, released_ids=released_ids or [])

    @classmethod
    def ignored(cls, reason: str) -> HandlerOutcome:
        return cls(kind=OutcomeKind.IGNORED, reason=reason)

    @property
    def is_ignored(self) -> bool:
        return self.kind == OutcomeKind.IGNORED
