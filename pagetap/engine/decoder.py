"""
pagetap/engine/decoder.py

Decode opaque binding payloads into typed instrumentation events.
"""

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from pagetap.data_models.events import InstrumentationEvent
from pagetap.utils.exceptions import DecodeError

_EVENT_ADAPTER: TypeAdapter[InstrumentationEvent] = TypeAdapter(InstrumentationEvent)


def _format_validation_error(error: ValidationError) -> str:
    """Compact one-line summary of a pydantic validation error."""
    parts = []
    for detail in error.errors():
        location = ".".join(str(loc) for loc in detail.get("loc", ()))
        parts.append(f"{location or '<payload>'}: {detail.get('msg')}")
    return "; ".join(parts)


def decode(raw_payload: str | bytes | dict[str, Any]) -> tuple[str, InstrumentationEvent]:
    """
    Decode one notification posted by the instrumentation script.
    Args:
        raw_payload: The JSON string carried by Runtime.bindingCalled, or an already-parsed mapping.
    Returns:
        (family, typed event)
    Raises:
        DecodeError: If the payload is not valid JSON, not an object, names no known family,
            uses a phase outside the family's vocabulary or lacks a required field.
    """
    if isinstance(raw_payload, (str, bytes, bytearray)):
        try:
            data = json.loads(raw_payload)
        except (ValueError, RecursionError) as e:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors; deep nesting exhausts the stack
            raise DecodeError(f"Payload is not valid JSON: {type(e).__name__}: {e}") from e
    else:
        data = raw_payload

    if not isinstance(data, dict):
        raise DecodeError(f"Payload must be a JSON object, got {type(data).__name__}")

    if "family" not in data:
        raise DecodeError("Payload has no 'family' field")

    try:
        event = _EVENT_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise DecodeError(
            f"Invalid {data.get('family')!r}/{data.get('phase')!r} event: {_format_validation_error(e)}"
        ) from e
    except RecursionError as e:
        raise DecodeError(f"Payload is nested too deeply: {e}") from e

    return event.family, event
