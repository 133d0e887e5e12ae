"""
tests/unit/engine/test_correlation_engine.py

End-to-end tests for NetworkCorrelationEngine: decode -> route -> handle -> store -> notify.
"""

import json
import threading

import pytest

from pagetap.data_models.enums import OutcomeKind, ProtocolFamily, ResourceType
from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.utils.exceptions import InvalidHistoryConfigError


class TestRequestFlows:
    """
    Tests for request/response families.
    """

    def test_simple_xhr_request(self, engine, make_event, recording_observer) -> None:
        """open -> send -> load produces one completed record and one capture."""
        created = engine.process(make_event("xhr", "open", "k1", url="https://example.com/a.json", method="get"))
        engine.process(make_event("xhr", "send", "k1", data=None))
        engine.process(make_event(
            "xhr", "load", "k1",
            status=200,
            statusText="OK",
            responseHeaders="content-type: application/json\r\n",
            responseText='{"ok":true}',
            duration=120,
        ))

        snapshot = engine.snapshot()
        assert len(snapshot) == 1
        record = snapshot[0]
        assert record.id == created.record.id
        assert record.method == "GET"
        assert record.status == 200
        assert record.resource_type == ResourceType.XHR
        assert record.formatted_duration == "120ms"
        assert record.response_headers == {"content-type": "application/json"}
        assert record.size_bytes == len('{"ok":true}')
        assert record.completed

        assert recording_observer.captured_ids == [record.id]
        assert recording_observer.updated_ids == [record.id, record.id]

    def test_fetch_request_accepts_json_string(self, engine, make_event) -> None:
        """The wire payload is the JSON string carried by the binding."""
        outcome = engine.process(json.dumps(make_event(
            "fetch", "request", "f1", url="https://example.com/api/users", method="POST", body='{"a":1}',
        )))
        assert outcome.kind == OutcomeKind.CREATED
        assert outcome.record.request_body == '{"a":1}'

    def test_fetch_error(self, engine, make_event) -> None:
        """A failed fetch ends with status 0 and the error text."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/x"))
        engine.process(make_event("fetch", "error", "f1", error="Failed to fetch", duration=5))

        record = engine.snapshot()[0]
        assert record.status == 0
        assert record.error_text == "Failed to fetch"
        assert record.protocol_state["state"] == "failed"
        assert record.completed

    def test_event_after_terminal_is_ignored(self, engine, make_event) -> None:
        """Status and duration are fixed once the terminal event is applied."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/x"))
        engine.process(make_event("fetch", "response", "f1", status=200, duration=50))
        outcome = engine.process(make_event("fetch", "error", "f1", duration=999))

        assert outcome.is_ignored
        assert outcome.reason == "flow already completed"
        record = engine.snapshot()[0]
        assert record.status == 200
        assert record.formatted_duration == "50ms"


class TestConnectionFlows:
    """
    Tests for connection-oriented families.
    """

    def test_websocket_lifecycle(self, engine, make_event, recording_observer) -> None:
        """connection -> open -> message x2 -> close accumulates size and retires the key."""
        engine.process(make_event("websocket", "connection", "k2", url="wss://example.com/socket"))
        engine.process(make_event("websocket", "open", "k2"))
        engine.process(make_event("websocket", "message", "k2", data="a" * 10, dataType="text", dataSize=10))
        engine.process(make_event("websocket", "message", "k2", data="b" * 20, dataType="text", dataSize=20))
        engine.process(make_event("websocket", "close", "k2", code=1000, reason="", wasClean=True))

        assert "k2" not in engine.correlation_table
        record = engine.snapshot()[0]
        assert record.size_bytes == 30
        assert record.formatted_size == "30B"
        assert record.protocol_state["state"] == "closed"
        assert record.protocol_state["messageCount"] == 2
        assert record.protocol_state["closeCode"] == 1000
        assert record.status == 101
        assert record.completed

        assert len(recording_observer.captured_ids) == 1
        assert len(recording_observer.updated_ids) == 4

    def test_event_on_retired_key_is_ignored(self, engine, make_event) -> None:
        """After close, neither data nor a new start is routed through the same key."""
        engine.process(make_event("websocket", "connection", "k2", url="wss://example.com/socket"))
        engine.process(make_event("websocket", "close", "k2", code=1006))

        late_message = engine.process(make_event("websocket", "message", "k2", data="x", dataSize=1))
        reused_start = engine.process(make_event("websocket", "connection", "k2", url="wss://example.com/other"))

        assert late_message.reason == "retired correlation key"
        assert reused_start.reason == "retired correlation key"
        assert len(engine) == 1
        assert engine.snapshot()[0].size_bytes == 0

    def test_event_on_pruned_retired_key_is_unknown(self, make_event) -> None:
        """Once the retired mark is pruned, a late event is still ignored, as an unknown key."""
        engine = NetworkCorrelationEngine(capacity=5, eviction_batch_size=2)
        engine.correlation_table.max_retired_keys = 1
        for key in ("a", "b"):
            engine.process(make_event("websocket", "connection", key, url=f"wss://example.com/{key}"))
            engine.process(make_event("websocket", "close", key, code=1000))

        assert engine.process(make_event("websocket", "message", "a", data="x")).reason == "unknown correlation key"
        assert engine.process(make_event("websocket", "message", "b", data="x")).reason == "retired correlation key"
        assert [record.size_bytes for record in engine.snapshot()] == [0, 0]

    def test_size_is_monotonic(self, engine, make_event) -> None:
        """Data events never shrink size_bytes."""
        engine.process(make_event("eventsource", "connection", "s1", url="https://example.com/stream"))
        sizes = []
        for payload in ("one", "", "three", "four"):
            engine.process(make_event("eventsource", "message", "s1", data=payload))
            sizes.append(engine.snapshot()[0].size_bytes)
        assert sizes == sorted(sizes)
        assert sizes[-1] == len("onethreefour")

    def test_eventsource_reconnect_is_not_terminal(self, engine, make_event) -> None:
        """An error while reconnecting keeps the stream routable; a final error ends it."""
        engine.process(make_event("eventsource", "connection", "s1", url="https://example.com/stream"))
        engine.process(make_event("eventsource", "error", "s1", readyState=0))
        assert "s1" in engine.correlation_table
        assert engine.snapshot()[0].protocol_state["state"] == "reconnecting"

        engine.process(make_event("eventsource", "error", "s1", readyState=2))
        assert "s1" not in engine.correlation_table
        record = engine.snapshot()[0]
        assert record.protocol_state["state"] == "error"
        assert record.completed

    def test_webrtc_never_ends(self, engine, make_event) -> None:
        """Peer connections stay routable after state changes."""
        engine.process(make_event("webrtc", "connection", "r1"))
        engine.process(make_event("webrtc", "connectionStateChange", "r1", connectionState="connected"))
        engine.process(make_event("webrtc", "dataChannelCreated", "r1", channelLabel="chat", channelOrigin="local"))
        engine.process(make_event("webrtc", "connectionStateChange", "r1", connectionState="closed"))

        assert "r1" in engine.correlation_table
        record = engine.snapshot()[0]
        assert record.url == "webrtc://peer-connection"
        assert record.protocol_state["state"] == "closed"
        assert record.protocol_state["dataChannelLabels"] == ["chat"]
        assert not record.completed


class TestRouting:
    """
    Tests for unroutable and malformed input.
    """

    def test_unknown_key_creates_nothing(self, engine, make_event, recording_observer) -> None:
        """A data event for a key that was never started is dropped without raising."""
        outcome = engine.process(make_event("websocket", "message", "ghost", data="x", dataSize=1))

        assert outcome.is_ignored
        assert outcome.reason == "unknown correlation key"
        assert len(engine) == 0
        assert recording_observer.calls == []

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "[1, 2, 3]",
            '{"phase": "request"}',
            '{"family": "carrier-pigeon", "phase": "send", "correlationKey": "k", "timestampMillis": 1}',
            '{"family": "fetch", "phase": "teleport", "correlationKey": "k", "timestampMillis": 1}',
            '{"family": "fetch", "phase": "request", "correlationKey": "k", "timestampMillis": 1}',
        ],
    )
    def test_decode_errors_are_counted(self, engine, payload: str) -> None:
        """Malformed payloads are ignored and counted, never raised."""
        outcome = engine.process(payload)
        assert outcome.reason == "decode error"
        assert engine.stats()["decode_errors"] == 1
        assert len(engine) == 0

    def test_deeply_nested_payload_is_a_decode_error(self, engine) -> None:
        """A payload nested past the parser's stack is dropped like any other malformed payload."""
        outcome = engine.process("[" * 100_000 + "]" * 100_000)
        assert outcome.kind == OutcomeKind.IGNORED
        assert outcome.reason == "decode error"
        assert engine.stats()["decode_errors"] == 1

    def test_debug_event_is_not_a_record(self, engine, make_event) -> None:
        """Diagnostics from the script are logged, not stored."""
        outcome = engine.process(make_event("debug", "initialized", None, message="installed"))
        assert outcome.reason == "diagnostic event"
        assert len(engine) == 0

    def test_duplicate_start_abandons_previous_record(self, engine, make_event) -> None:
        """Last start wins: the earlier record stays in history but is no longer routable."""
        first = engine.process(make_event("fetch", "request", "dup", url="https://example.com/1"))
        second = engine.process(make_event("fetch", "request", "dup", url="https://example.com/2"))
        engine.process(make_event("fetch", "response", "dup", status=204))

        assert len(engine) == 2
        assert engine.get_record(first.record.id).status == 0
        assert engine.get_record(second.record.id).status == 204

    def test_handler_error_is_contained(self, engine, make_event, monkeypatch) -> None:
        """An exception inside a handler is logged and reported as ignored."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/x"))

        def _boom(record, event):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine._handlers[ProtocolFamily.FETCH], "update_record", _boom)
        outcome = engine.process(make_event("fetch", "response", "f1", status=200))

        assert outcome.reason == "handler error"
        assert engine.stats()["ignored_reasons"]["handler error"] == 1


class TestHistory:
    """
    Tests for eviction, clearing and orphan re-insertion.
    """

    def test_eviction_in_batches(self, engine, make_event) -> None:
        """With N=5 and K=2, the 6th insert evicts the two oldest records."""
        ids = [
            engine.process(make_event("resource", "load", f"r{i}", url=f"https://cdn.example.com/{i}.js")).record.id
            for i in range(6)
        ]
        snapshot_ids = [record.id for record in engine.snapshot()]
        assert snapshot_ids == ids[2:]
        assert len(engine) == 4
        assert engine.stats()["evicted"] == 2

        engine.process(make_event("resource", "load", "r6", url="https://cdn.example.com/6.js"))
        assert len(engine) == 5

    def test_orphan_is_reinserted_on_update(self, engine, make_event, recording_observer) -> None:
        """An evicted but still-live flow re-appears at the tail when it is updated."""
        engine.process(make_event("websocket", "connection", "ws", url="wss://example.com/socket"))
        ws_id = engine.snapshot()[0].id
        for i in range(5):
            engine.process(make_event("resource", "load", f"r{i}", url=f"https://cdn.example.com/{i}.png"))
        assert ws_id not in [record.id for record in engine.snapshot()]

        outcome = engine.process(make_event("websocket", "message", "ws", data="hi", dataSize=2))

        assert outcome.kind == OutcomeKind.UPDATED
        snapshot = engine.snapshot()
        assert snapshot[-1].id == ws_id
        assert snapshot[-1].size_bytes == 2
        assert recording_observer.captured_ids.count(ws_id) == 1
        assert ws_id in recording_observer.updated_ids

    def test_evicted_completed_record_is_released(self, engine, make_event) -> None:
        """Completed records leave the routing table when they leave the history."""
        engine.process(make_event("fetch", "request", "old", url="https://example.com/old"))
        engine.process(make_event("fetch", "response", "old", status=200))
        for i in range(5):
            engine.process(make_event("resource", "load", f"r{i}", url=f"https://cdn.example.com/{i}.css"))

        assert "old" not in engine.correlation_table
        outcome = engine.process(make_event("fetch", "response", "old", status=500))
        assert outcome.reason == "unknown correlation key"

    def test_clear_keeps_routing(self, engine, make_event, recording_observer) -> None:
        """clear() empties the history but live flows keep updating and re-appear."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/slow"))
        assert engine.clear() == 1
        assert engine.snapshot() == []

        engine.process(make_event("fetch", "response", "f1", status=200, duration=10))

        snapshot = engine.snapshot()
        assert len(snapshot) == 1
        assert snapshot[0].status == 200
        assert len(recording_observer.captured_ids) == 1

    def test_clear_releases_finished_records(self, engine, make_event) -> None:
        """Repeated clears do not leak routing entries for finished flows; live flows stay routable."""
        engine.process(make_event("websocket", "connection", "live", url="wss://example.com/socket"))
        fetch_ids = []
        for i in range(50):
            fetch_ids.append(
                engine.process(make_event("fetch", "request", f"f{i}", url=f"https://example.com/{i}")).record.id
            )
            engine.process(make_event("fetch", "response", f"f{i}", status=200))
            engine.clear()

        assert len(engine.correlation_table) == 1
        assert "live" in engine.correlation_table
        outcome = engine.process(make_event("fetch", "response", "f49", status=500))
        assert outcome.reason == "unknown correlation key"
        assert not any(engine._bus.was_captured(record_id) for record_id in fetch_ids)

    def test_invalid_history_config(self) -> None:
        """K larger than N is rejected at construction."""
        with pytest.raises(InvalidHistoryConfigError):
            NetworkCorrelationEngine(capacity=2, eviction_batch_size=3)


class TestNavigation:
    """
    Tests for top-level navigation handling.
    """

    def test_navigation_clears_routing(self, engine, make_event) -> None:
        """Keys of the previous page are not routable after navigation; history is kept."""
        engine.process(make_event("websocket", "connection", "k1", url="wss://example.com/socket"))
        engine.on_navigation_start()

        outcome = engine.process(make_event("websocket", "message", "k1", data="x", dataSize=1))
        assert outcome.reason == "unknown correlation key"
        assert len(engine.correlation_table) == 0
        assert len(engine) == 1

    def test_navigation_resets_retired_keys(self, engine, make_event) -> None:
        """A key retired on the previous page may start a new flow on the next one."""
        engine.process(make_event("websocket", "connection", "k1", url="wss://example.com/a"))
        engine.process(make_event("websocket", "close", "k1", code=1000))
        engine.on_navigation_start()

        outcome = engine.process(make_event("websocket", "connection", "k1", url="wss://example.com/b"))
        assert outcome.kind == OutcomeKind.CREATED

    def test_navigation_record(self, engine, recording_observer) -> None:
        """A navigation with a URL is captured, then completed on load."""
        started = engine.on_navigation_start(url="https://example.com/", method="get")
        assert started.protocol_family == ProtocolFamily.NAVIGATION
        assert started.method == "GET"
        assert started.protocol_state["state"] == "loading"

        finished = engine.on_navigation_finished()
        assert finished.id == started.id
        assert finished.status == 200
        assert finished.completed
        assert finished.protocol_state["state"] == "loaded"

        assert recording_observer.captured_ids == [started.id]
        assert recording_observer.updated_ids == [started.id]
        assert engine.on_navigation_finished() is None

    def test_navigation_finished_without_start(self, engine) -> None:
        """A load signal with no pending navigation does nothing."""
        assert engine.on_navigation_finished() is None
        assert len(engine) == 0


class TestQueries:
    """
    Tests for snapshot isolation, search and stats.
    """

    def test_snapshot_is_a_copy(self, engine, make_event) -> None:
        """Mutating a snapshot does not affect the engine."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/x"))
        engine.snapshot()[0].protocol_state["state"] = "tampered"
        assert engine.snapshot()[0].protocol_state["state"] == "pending"

    def test_observer_receives_copies(self, engine, make_event, recording_observer) -> None:
        """Records delivered to observers are detached from engine state."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/x"))
        _, delivered = recording_observer.calls[0]
        delivered.status = 999
        assert engine.snapshot()[0].status == 0

    def test_search(self, engine, make_event) -> None:
        """Search filters the history by text and resource type."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/api/users", method="POST"))
        engine.process(make_event("resource", "load", "r1", url="https://cdn.example.com/app.js"))
        engine.process(make_event("websocket", "connection", "w1", url="wss://example.com/live"))

        assert [r.method for r in engine.search(text="post")] == ["POST"]
        assert [r.url for r in engine.search(resource_type=ResourceType.SCRIPT)] == ["https://cdn.example.com/app.js"]
        assert [r.method for r in engine.search(resource_type=ResourceType.WEBSOCKET)] == ["WEBSOCKET"]
        assert len(engine.search()) == 3

    def test_stats(self, engine, make_event) -> None:
        """Stats summarize activity and the current history."""
        engine.process(make_event("fetch", "request", "f1", url="https://example.com/x"))
        engine.process(make_event("fetch", "response", "f1", status=404, headers={"content-length": "7"}))
        engine.process(make_event("resource", "load", "r1", url="https://cdn.example.com/a.js", transferSize=100))
        engine.process(make_event("xhr", "load", "ghost", status=200))
        engine.process("garbage")

        stats = engine.stats()
        assert stats["history_length"] == 2
        assert stats["history_capacity"] == 5
        assert stats["created"] == 2
        assert stats["updated"] == 1
        assert stats["ignored"] == 2
        assert stats["ignored_reasons"] == {"unknown correlation key": 1, "decode error": 1}
        assert stats["decode_errors"] == 1
        assert stats["records_by_family"] == {"fetch": 1, "resource": 1}
        assert stats["records_by_status_class"] == {"client_error": 1, "success": 1}
        assert stats["total_bytes"] == 107


class TestConcurrency:
    """
    Tests for concurrent producers feeding one engine.
    """

    THREADS = 8
    SOCKETS_PER_THREAD = 4
    MESSAGES_PER_SOCKET = 25

    @staticmethod
    def _socket_session(engine: NetworkCorrelationEngine, thread_index: int, barrier: threading.Barrier) -> None:
        barrier.wait()
        timestamp = 1_700_000_000_000
        for socket_index in range(TestConcurrency.SOCKETS_PER_THREAD):
            key = f"t{thread_index}-ws{socket_index}"
            events = [{"phase": "connection", "url": f"wss://example.com/{key}"}, {"phase": "open"}]
            events += [
                {"phase": "message", "data": "x" * size, "dataType": "text", "dataSize": size}
                for size in range(1, TestConcurrency.MESSAGES_PER_SOCKET + 1)
            ]
            events.append({"phase": "close", "code": 1000, "wasClean": True})
            for event in events:
                timestamp += 1
                engine.process(json.dumps({
                    "family": "websocket", "correlationKey": key, "timestampMillis": timestamp, **event,
                }))

    def test_parallel_producers(self, recording_observer) -> None:
        """Interleaved producers never double-capture, lose updates or overflow the history."""
        engine = NetworkCorrelationEngine(capacity=10, eviction_batch_size=3)
        engine.subscribe(recording_observer)
        barrier = threading.Barrier(self.THREADS)
        threads = [
            threading.Thread(target=self._socket_session, args=(engine, index, barrier))
            for index in range(self.THREADS)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        captured_ids = recording_observer.captured_ids
        assert len(captured_ids) == self.THREADS * self.SOCKETS_PER_THREAD
        assert len(set(captured_ids)) == len(captured_ids)

        first_seen: dict[int, str] = {}
        last_seen = {}
        for kind, record in recording_observer.calls:
            first_seen.setdefault(record.id, kind)
            last_seen[record.id] = record
        assert set(first_seen.values()) == {"captured"}

        expected_size = sum(range(1, self.MESSAGES_PER_SOCKET + 1))
        for record in last_seen.values():
            assert record.completed
            assert record.size_bytes == expected_size
            assert record.protocol_state["messageCount"] == self.MESSAGES_PER_SOCKET

        assert len(engine) <= 10
        assert len(engine.correlation_table) == 0
        assert engine.stats()["ignored"] == 0
