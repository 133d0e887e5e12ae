"""
pagetap/engine/notification_bus.py

Observer-facing capture/update notifications.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from pagetap.data_models.network import NetworkRecord
from pagetap.utils.logger import get_logger

logger = get_logger(name=__name__)


class AbstractNetworkObserver(ABC):
    """
    Abstract base class for consumers of captured network records (list views, exporters, CLIs).
    Callbacks run synchronously on the engine's writer context and receive a snapshot copy of the record.
    """

    @abstractmethod
    def on_captured(self, record: NetworkRecord) -> None:
        """Called exactly once per record id, when the record is created."""
        pass

    @abstractmethod
    def on_updated(self, record: NetworkRecord) -> None:
        """Called on every later mutation of a captured record."""
        pass


class NotificationBus:
    """
    Ordered list of observers plus the bookkeeping that enforces at-most-one capture per record id.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self) -> None:
        self._observers: list[AbstractNetworkObserver] = []
        self._announced_ids: set[int] = set()

    def __len__(self) -> int:
        return len(self._observers)


    # Private methods ______________________________________________________________________________________________________

    def _deliver(self, callback_name: str, record: NetworkRecord) -> None:
        """Call `callback_name` on every observer with its own copy of `record`."""
        for observer in list(self._observers):
            try:
                getattr(observer, callback_name)(record.model_copy(deep=True))
            except Exception as e:
                logger.error(
                    "❌ Observer %s failed in %s for record %d: %s",
                    type(observer).__name__, callback_name, record.id, e,
                    exc_info=True,
                )


    # Public methods _______________________________________________________________________________________________________

    def subscribe(self, observer: AbstractNetworkObserver) -> None:
        """Register an observer (idempotent)."""
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: AbstractNetworkObserver) -> None:
        """Remove an observer; unknown observers are ignored."""
        if observer in self._observers:
            self._observers.remove(observer)

    def publish_captured(self, record: NetworkRecord) -> bool:
        """
        Fire on_captured for a new record.
        Returns:
            False if this id was already announced (nothing is delivered).
        """
        if record.id in self._announced_ids:
            return False
        self._announced_ids.add(record.id)
        self._deliver("on_captured", record)
        return True

    def publish_updated(self, record: NetworkRecord) -> bool:
        """
        Fire on_updated for a mutated record.
        Returns:
            False if the record was never captured (nothing is delivered).
        """
        if record.id not in self._announced_ids:
            return False
        self._deliver("on_updated", record)
        return True

    def was_captured(self, record_id: int) -> bool:
        return record_id in self._announced_ids

    def forget(self, record_ids: Iterable[int]) -> None:
        """
        Drop bookkeeping for records that can no longer be updated.
        Ids are never reused, so a forgotten id cannot be captured twice.
        """
        self._announced_ids.difference_update(record_ids)
