"""
pagetap/engine/history_store.py

Append-ordered, capacity-bounded history of network records.
"""

from collections import OrderedDict
from typing import Iterator

from pagetap.config import Config
from pagetap.data_models.network import NetworkRecord
from pagetap.utils.exceptions import InvalidHistoryConfigError
from pagetap.utils.logger import get_logger

logger = get_logger(name=__name__)


class HistoryStore:
    """
    Insertion-ordered record history with batched eviction.

    When an append makes the store longer than `capacity`, the oldest `eviction_batch_size`
    records are evicted in one batch. Records are never removed any other way except `clear()`.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        capacity: int | None = None,
        eviction_batch_size: int | None = None,
    ) -> None:
        """
        Initialize the HistoryStore.
        Args:
            capacity: Maximum number of records kept (N). Defaults to Config.HISTORY_CAPACITY.
            eviction_batch_size: Number of oldest records evicted at once (K). Defaults to Config.EVICTION_BATCH_SIZE.
        Raises:
            InvalidHistoryConfigError: If capacity < 1, batch < 1 or batch > capacity.
        """
        self.capacity = capacity if capacity is not None else Config.HISTORY_CAPACITY
        self.eviction_batch_size = (
            eviction_batch_size if eviction_batch_size is not None else Config.EVICTION_BATCH_SIZE
        )

        if self.capacity < 1:
            raise InvalidHistoryConfigError(f"History capacity must be >= 1, got {self.capacity}")
        if self.eviction_batch_size < 1:
            raise InvalidHistoryConfigError(
                f"Eviction batch size must be >= 1, got {self.eviction_batch_size}"
            )
        if self.eviction_batch_size > self.capacity:
            raise InvalidHistoryConfigError(
                f"Eviction batch size ({self.eviction_batch_size}) cannot exceed capacity ({self.capacity})"
            )

        self._records: OrderedDict[int, NetworkRecord] = OrderedDict()
        self.evicted_count: int = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[NetworkRecord]:
        # iterate over a copy so the writer may keep appending
        return iter(list(self._records.values()))


    # Public methods _______________________________________________________________________________________________________

    def append(self, record: NetworkRecord) -> list[NetworkRecord]:
        """
        Append a record at the tail (moving it there if already present).
        Args:
            record: The record to append.
        Returns:
            The records evicted by this append, oldest first.
        """
        if record.id in self._records:
            self._records.move_to_end(record.id)
            return []

        self._records[record.id] = record
        if len(self._records) <= self.capacity:
            return []

        evicted = [self._records.popitem(last=False)[1] for _ in range(self.eviction_batch_size)]
        self.evicted_count += len(evicted)
        logger.info(
            "🗑️ Evicted %d oldest records (ids %d-%d); %d remain",
            len(evicted), evicted[0].id, evicted[-1].id, len(self._records),
        )
        return evicted

    def get(self, record_id: int) -> NetworkRecord | None:
        return self._records.get(record_id)

    def snapshot(self) -> list[NetworkRecord]:
        """Deep copies of all records in insertion order."""
        return [record.model_copy(deep=True) for record in self._records.values()]

    def clear(self) -> int:
        """
        Remove every record.
        Returns:
            The number of records removed.
        """
        removed = len(self._records)
        self._records.clear()
        return removed
