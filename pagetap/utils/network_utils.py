"""
pagetap/utils/network_utils.py

Classification and formatting helpers for captured network records.
All functions here are pure.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any, Iterable
from urllib.parse import urlparse

from pagetap.data_models.enums import ProtocolFamily, ResourceType, StatusClass

if TYPE_CHECKING:  # avoid circular import
    from pagetap.data_models.network import NetworkRecord


EXTENSION_RESOURCE_TYPES: dict[str, ResourceType] = {
    "css": ResourceType.STYLESHEET,
    "js": ResourceType.SCRIPT,
    "png": ResourceType.IMAGE,
    "jpg": ResourceType.IMAGE,
    "jpeg": ResourceType.IMAGE,
    "gif": ResourceType.IMAGE,
    "webp": ResourceType.IMAGE,
    "svg": ResourceType.IMAGE,
    "woff": ResourceType.FONT,
    "woff2": ResourceType.FONT,
    "ttf": ResourceType.FONT,
    "otf": ResourceType.FONT,
    "json": ResourceType.XHR,
    "mp4": ResourceType.MEDIA,
    "webm": ResourceType.MEDIA,
    "ogg": ResourceType.MEDIA,
}

FAMILY_RESOURCE_TYPES: dict[ProtocolFamily, ResourceType] = {
    ProtocolFamily.WEBSOCKET: ResourceType.WEBSOCKET,
    ProtocolFamily.EVENTSOURCE: ResourceType.EVENTSOURCE,
    ProtocolFamily.WEBRTC: ResourceType.WEBRTC,
}

STATUS_LABELS: dict[int, str] = {
    101: "Switching Protocols",
    200: "OK",
    201: "Created",
    204: "No Content",
    301: "Moved Permanently",
    302: "Found",
    304: "Not Modified",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def get_host(url: str) -> str:
    """Extract host from URL, or "unknown" if it has none."""
    try:
        return urlparse(url).hostname or "unknown"
    except ValueError:
        return "unknown"


def _get_extension(url: str) -> str:
    """Lowercased path extension without the dot ("" if none)."""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return PurePosixPath(path).suffix.lower().lstrip(".")


def resource_type_for(family: ProtocolFamily, url: str) -> ResourceType:
    """
    Classify a flow for display.
    Connection-oriented families map directly; everything else is inferred from the URL path extension.
    Args:
        family: The protocol family the flow was captured from.
        url: The flow URL.
    Returns:
        The resource type.
    """
    if family in FAMILY_RESOURCE_TYPES:
        return FAMILY_RESOURCE_TYPES[family]
    return EXTENSION_RESOURCE_TYPES.get(_get_extension(url), ResourceType.DOCUMENT)


def resource_type(record: NetworkRecord) -> ResourceType:
    """Classify a record for display."""
    return resource_type_for(record.protocol_family, record.url)


def status_class(status: int) -> StatusClass:
    """Bucket a status code; anything outside 200-599 counts as pending."""
    if 200 <= status <= 299:
        return StatusClass.SUCCESS
    if 300 <= status <= 399:
        return StatusClass.REDIRECT
    if 400 <= status <= 499:
        return StatusClass.CLIENT_ERROR
    if 500 <= status <= 599:
        return StatusClass.SERVER_ERROR
    return StatusClass.PENDING


def status_label(status: int) -> str:
    """Reason phrase for well-known codes, the bare code otherwise, "Pending" for 0."""
    if status in STATUS_LABELS:
        return STATUS_LABELS[status]
    return str(status) if status > 0 else "Pending"


def format_bytes(num_bytes: int) -> str:
    """Format a byte count as B, KB (whole) or MB (one decimal)."""
    if num_bytes < 1024:
        return f"{num_bytes}B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes // 1024}KB"
    return f"{num_bytes / (1024 * 1024):.1f}MB"


def format_duration(seconds: float) -> str:
    """Format a duration as whole milliseconds below one second, otherwise seconds with one decimal."""
    if seconds < 1.0:
        return f"{int(round(seconds * 1000))}ms"
    return f"{seconds:.1f}s"


def parse_raw_headers(header_block: str) -> dict[str, str]:
    """
    Parse a raw CRLF-separated header block (as returned by getAllResponseHeaders()).
    Args:
        header_block: e.g. "content-type: text/html\\r\\nx-id: 1\\r\\n"
    Returns:
        Header mapping; later duplicates overwrite earlier ones.
    """
    headers: dict[str, str] = {}
    for line in header_block.replace("\r\n", "\n").split("\n"):
        name, sep, value = line.partition(": ")
        if sep and name:
            headers[name.strip()] = value.strip()
    return headers


def normalize_headers(raw: Any) -> dict[str, str]:
    """
    Coerce the header shapes seen on the wire into a flat str -> str mapping.
    Accepts a mapping, a raw header block, a list of [name, value] pairs or a list of {name, value} objects.
    """
    if not raw:
        return {}
    if isinstance(raw, str):
        return parse_raw_headers(raw)
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    headers: dict[str, str] = {}
    if isinstance(raw, (list, tuple)):
        for item in raw:
            if isinstance(item, dict) and "name" in item:
                headers[str(item["name"])] = str(item.get("value", ""))
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                headers[str(item[0])] = str(item[1])
    return headers


def truncate_text(text: Any, max_chars: int) -> str | None:
    """Stringify and truncate a body or payload; None stays None."""
    if text is None:
        return None
    if not isinstance(text, str):
        text = str(text)
    return text[:max_chars]


def utf8_size(text: str | None) -> int:
    """Size of a text payload in UTF-8 bytes."""
    if not text:
        return 0
    return len(text.encode("utf-8", errors="replace"))


def filter_records(
    records: Iterable[NetworkRecord],
    text: str = "",
    resource_type_filter: ResourceType | None = None,
) -> list[NetworkRecord]:
    """
    Filter records the way the network list search bar does.
    Args:
        records: Records to filter (order is preserved).
        text: Case-insensitive match against URL or method, or substring of the status code.
        resource_type_filter: Keep only records of this resource type (None keeps all).
    Returns:
        The matching records.
    """
    needle = text.strip().lower()
    matches = []
    for record in records:
        if resource_type_filter is not None and resource_type(record) != resource_type_filter:
            continue
        if needle and not (
            needle in record.url.lower()
            or needle in record.method.lower()
            or needle in str(record.status)
        ):
            continue
        matches.append(record)
    return matches
