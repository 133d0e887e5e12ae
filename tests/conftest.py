"""
tests/conftest.py

Configuration for pytest.
"""

from itertools import count
from pathlib import Path
from typing import Any, Callable

import pytest

from pagetap.data_models.network import NetworkRecord
from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.engine.notification_bus import AbstractNetworkObserver

# 2023-11-14T22:13:20Z in milliseconds
BASE_TIMESTAMP_MILLIS = 1_700_000_000_000


class RecordingObserver(AbstractNetworkObserver):
    """
    Observer that records every notification as ("captured" | "updated", record).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, NetworkRecord]] = []

    def on_captured(self, record: NetworkRecord) -> None:
        self.calls.append(("captured", record))

    def on_updated(self, record: NetworkRecord) -> None:
        self.calls.append(("updated", record))

    @property
    def captured_ids(self) -> list[int]:
        return [record.id for kind, record in self.calls if kind == "captured"]

    @property
    def updated_ids(self) -> list[int]:
        return [record.id for kind, record in self.calls if kind == "updated"]


@pytest.fixture(scope="session")
def tests_root() -> Path:
    """
    Root directory for tests.
    Returns:
        Path to the tests directory.
    """
    return Path(__file__).parent.resolve()


@pytest.fixture(scope="session")
def data_dir(tests_root: Path) -> Path:
    """
    Directory containing test data files.
    Returns:
        Path to tests/data.
    """
    d = tests_root / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="session")
def input_data_dir(data_dir: Path) -> Path:
    """
    Directory containing input test data files.
    Returns:
        Path to tests/data/input.
    """
    d = data_dir / "input"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    """
    Factory for wire-format notifications as posted by the injected script.
    Timestamps advance by 10ms per event unless `timestampMillis` is given.
    Usage:
        make_event("websocket", "message", "k2", data="hi", dataSize=2)
    """
    ticks = count()

    def _make_event(family: str, phase: str, key: str | None, **fields: Any) -> dict[str, Any]:
        event = {
            "family": family,
            "phase": phase,
            "correlationKey": key,
            "timestampMillis": BASE_TIMESTAMP_MILLIS + 10 * next(ticks),
        }
        event.update(fields)
        return event

    return _make_event


@pytest.fixture
def recording_observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def engine(recording_observer: RecordingObserver) -> NetworkCorrelationEngine:
    """
    Engine with a small history (N=5, K=2) and a recording observer subscribed.
    """
    engine = NetworkCorrelationEngine(capacity=5, eviction_batch_size=2)
    engine.subscribe(recording_observer)
    return engine
