"""
tests/unit/utils/test_network_utils.py

Tests for classification and formatting helpers.
"""

import pytest

from pagetap.data_models.enums import ProtocolFamily, ResourceType, StatusClass
from pagetap.data_models.network import NetworkRecord
from pagetap.utils.network_utils import (
    filter_records,
    format_bytes,
    format_duration,
    get_host,
    normalize_headers,
    parse_raw_headers,
    resource_type,
    resource_type_for,
    status_class,
    status_label,
    truncate_text,
    utf8_size,
)


def _record(url: str, method: str = "GET", status: int = 0, family: ProtocolFamily = ProtocolFamily.FETCH) -> NetworkRecord:
    return NetworkRecord(url=url, method=method, status=status, protocol_family=family)


class TestResourceType:
    """
    Tests for resource_type_for / resource_type.
    """

    @pytest.mark.parametrize(
        "family, expected",
        [
            (ProtocolFamily.WEBSOCKET, ResourceType.WEBSOCKET),
            (ProtocolFamily.EVENTSOURCE, ResourceType.EVENTSOURCE),
            (ProtocolFamily.WEBRTC, ResourceType.WEBRTC),
        ],
    )
    def test_connection_family_overrides_extension(self, family: ProtocolFamily, expected: ResourceType) -> None:
        """Connection-oriented families map directly, whatever the URL looks like."""
        assert resource_type_for(family, "https://example.com/feed.json") == expected

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://example.com/site.css", ResourceType.STYLESHEET),
            ("https://example.com/app.js", ResourceType.SCRIPT),
            ("https://example.com/logo.PNG", ResourceType.IMAGE),
            ("https://example.com/photo.jpeg", ResourceType.IMAGE),
            ("https://example.com/icon.svg", ResourceType.IMAGE),
            ("https://example.com/font.woff2", ResourceType.FONT),
            ("https://example.com/a.json", ResourceType.XHR),
            ("https://example.com/clip.mp4", ResourceType.MEDIA),
            ("https://example.com/", ResourceType.DOCUMENT),
            ("https://example.com/api/users", ResourceType.DOCUMENT),
            ("https://example.com/archive.tar.gz", ResourceType.DOCUMENT),
        ],
    )
    def test_extension_table(self, url: str, expected: ResourceType) -> None:
        """Non-connection families are classified by path extension."""
        assert resource_type_for(ProtocolFamily.FETCH, url) == expected

    def test_query_string_is_ignored(self) -> None:
        """The extension comes from the path, not the query."""
        assert resource_type_for(ProtocolFamily.RESOURCE, "https://cdn.example.com/app.js?v=3.css") == ResourceType.SCRIPT

    def test_record_classification_is_deterministic(self) -> None:
        """Same record, same answer."""
        record = _record("https://example.com/a.json")
        assert resource_type(record) == resource_type(record) == ResourceType.XHR


class TestStatusClass:
    """
    Tests for status_class and status_label.
    """

    @pytest.mark.parametrize(
        "status, expected",
        [
            (0, StatusClass.PENDING),
            (101, StatusClass.PENDING),
            (199, StatusClass.PENDING),
            (200, StatusClass.SUCCESS),
            (299, StatusClass.SUCCESS),
            (300, StatusClass.REDIRECT),
            (399, StatusClass.REDIRECT),
            (400, StatusClass.CLIENT_ERROR),
            (499, StatusClass.CLIENT_ERROR),
            (500, StatusClass.SERVER_ERROR),
            (599, StatusClass.SERVER_ERROR),
            (600, StatusClass.PENDING),
        ],
    )
    def test_boundaries(self, status: int, expected: StatusClass) -> None:
        """Bucket boundaries are inclusive on both ends."""
        assert status_class(status) == expected

    def test_status_label(self) -> None:
        """Known codes get their reason phrase; 0 is pending; others echo the code."""
        assert status_label(200) == "OK"
        assert status_label(404) == "Not Found"
        assert status_label(101) == "Switching Protocols"
        assert status_label(0) == "Pending"
        assert status_label(418) == "418"


class TestFormatting:
    """
    Tests for format_bytes and format_duration.
    """

    @pytest.mark.parametrize(
        "num_bytes, expected",
        [
            (0, "0B"),
            (1023, "1023B"),
            (1024, "1KB"),
            (1536, "1KB"),
            (1024 * 1024 - 1, "1023KB"),
            (1024 * 1024, "1.0MB"),
            (5 * 1024 * 1024 + 512 * 1024, "5.5MB"),
        ],
    )
    def test_format_bytes(self, num_bytes: int, expected: str) -> None:
        """B below 1KiB, whole KB below 1MiB, one-decimal MB above."""
        assert format_bytes(num_bytes) == expected

    @pytest.mark.parametrize(
        "seconds, expected",
        [
            (0.0, "0ms"),
            (0.12, "120ms"),
            (0.0004, "0ms"),
            (0.9994, "999ms"),
            (1.0, "1.0s"),
            (2.345, "2.3s"),
            (61.0, "61.0s"),
        ],
    )
    def test_format_duration(self, seconds: float, expected: str) -> None:
        """Milliseconds below one second, seconds with one decimal otherwise."""
        assert format_duration(seconds) == expected


class TestHeaders:
    """
    Tests for parse_raw_headers and normalize_headers.
    """

    def test_parse_raw_headers_crlf(self) -> None:
        """getAllResponseHeaders() style blocks are split on CRLF and the first ': '."""
        block = "content-type: application/json\r\ndate: Tue, 14 Nov 2023 22:13:20 GMT\r\nx-note: a: b\r\n"
        headers = parse_raw_headers(block)
        assert headers == {
            "content-type": "application/json",
            "date": "Tue, 14 Nov 2023 22:13:20 GMT",
            "x-note": "a: b",
        }

    def test_parse_raw_headers_skips_garbage(self) -> None:
        """Lines without a separator are ignored."""
        assert parse_raw_headers("garbage\r\n\r\nok: yes") == {"ok": "yes"}

    def test_normalize_mapping(self) -> None:
        """Values are coerced to strings."""
        assert normalize_headers({"content-length": 12}) == {"content-length": "12"}

    def test_normalize_pairs_and_objects(self) -> None:
        """Lists of pairs and of {name, value} objects are both accepted."""
        assert normalize_headers([["a", "1"], ("b", 2)]) == {"a": "1", "b": "2"}
        assert normalize_headers([{"name": "a", "value": "1"}]) == {"a": "1"}

    def test_normalize_empty(self) -> None:
        """None and empty inputs give an empty mapping."""
        assert normalize_headers(None) == {}
        assert normalize_headers("") == {}
        assert normalize_headers(42) == {}


class TestTextHelpers:
    """
    Tests for get_host, truncate_text and utf8_size.
    """

    def test_get_host(self) -> None:
        """Host is extracted, missing hosts become 'unknown'."""
        assert get_host("https://api.example.com:8443/v1") == "api.example.com"
        assert get_host("webrtc://peer-connection") == "peer-connection"
        assert get_host("about:blank") == "unknown"

    def test_truncate_text(self) -> None:
        """Strings are cut to the limit, None stays None, other values are stringified."""
        assert truncate_text("abcdef", 3) == "abc"
        assert truncate_text(None, 3) is None
        assert truncate_text(12345, 2) == "12"

    def test_utf8_size(self) -> None:
        """Size is measured in UTF-8 bytes, not characters."""
        assert utf8_size("abc") == 3
        assert utf8_size("é") == 2
        assert utf8_size(None) == 0


class TestFilterRecords:
    """
    Tests for filter_records.
    """

    def test_filter_by_text(self) -> None:
        """Text matches URL or method case-insensitively, or a substring of the status."""
        records = [
            _record("https://example.com/api/users", method="POST", status=201),
            _record("https://cdn.example.com/app.js", status=404),
            _record("https://example.com/index.html", status=200),
        ]
        assert [r.url for r in filter_records(records, text="API")] == ["https://example.com/api/users"]
        assert [r.method for r in filter_records(records, text="post")] == ["POST"]
        assert [r.status for r in filter_records(records, text="40")] == [404]
        assert len(filter_records(records, text="")) == 3

    def test_filter_by_resource_type(self) -> None:
        """The resource type filter composes with the text filter."""
        records = [
            _record("https://cdn.example.com/app.js"),
            _record("https://cdn.example.com/site.css"),
            _record("wss://example.com/socket", family=ProtocolFamily.WEBSOCKET),
        ]
        scripts = filter_records(records, resource_type_filter=ResourceType.SCRIPT)
        assert [r.url for r in scripts] == ["https://cdn.example.com/app.js"]
        assert filter_records(records, text="css", resource_type_filter=ResourceType.SCRIPT) == []
