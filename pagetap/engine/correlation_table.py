"""
pagetap/engine/correlation_table.py

Routing table from page-minted correlation keys to record ids.
"""

from collections import OrderedDict

from pagetap.config import Config
from pagetap.data_models.network import NetworkRecord
from pagetap.utils.logger import get_logger

logger = get_logger(name=__name__)


class CorrelationTable:
    """
    Maps correlation key -> record id, plus an id -> record arena for records that are still routable.
    Scoped to one page load: cleared wholesale on top-level navigation.
    Keys retired by a connection's terminal event are remembered and never re-bound within the same load,
    up to `max_retired_keys`; past that the oldest marks are dropped and a late event on such a key
    is ignored as unknown instead of retired.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, max_retired_keys: int | None = None) -> None:
        self.max_retired_keys = max_retired_keys if max_retired_keys is not None else Config.RETIRED_KEYS_MAX_SIZE
        if self.max_retired_keys < 0:
            raise ValueError(f"max_retired_keys must be >= 0, got {self.max_retired_keys}")
        self._ids_by_key: dict[str, int] = {}
        self._records_by_id: dict[int, NetworkRecord] = {}
        self._retired_keys: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._ids_by_key)

    def __contains__(self, key: object) -> bool:
        return key in self._ids_by_key


    # Private methods ______________________________________________________________________________________________________

    def _drop_record_if_unreferenced(self, record_id: int) -> None:
        """Remove a record from the arena once no key points at it."""
        if record_id not in self._ids_by_key.values():
            self._records_by_id.pop(record_id, None)


    # Public methods _______________________________________________________________________________________________________

    def bind(self, key: str, record: NetworkRecord) -> int | None:
        """
        Route `key` to `record`, overwriting any live binding (last start wins).
        Returns:
            The id of the abandoned record, if the key was already bound.
        """
        abandoned_id = self._ids_by_key.get(key)
        self._ids_by_key[key] = record.id
        self._records_by_id[record.id] = record
        if abandoned_id is not None and abandoned_id != record.id:
            logger.debug("Correlation key %s re-bound: record %d abandoned for %d", key, abandoned_id, record.id)
            self._drop_record_if_unreferenced(abandoned_id)
            return abandoned_id
        return None

    def lookup(self, key: str) -> NetworkRecord | None:
        """Return the record routed by `key`, or None."""
        record_id = self._ids_by_key.get(key)
        if record_id is None:
            return None
        return self._records_by_id.get(record_id)

    def retire(self, key: str) -> int | None:
        """
        Remove `key` after a terminal connection event; it will not be routable again in this page load.
        Returns:
            The id the key pointed to, if any.
        """
        self._retired_keys[key] = None
        self._retired_keys.move_to_end(key)
        while len(self._retired_keys) > self.max_retired_keys:
            self._retired_keys.popitem(last=False)
        record_id = self._ids_by_key.pop(key, None)
        if record_id is not None:
            self._drop_record_if_unreferenced(record_id)
        return record_id

    def is_retired(self, key: str) -> bool:
        return key in self._retired_keys

    def is_routable(self, record_id: int) -> bool:
        """Whether some live key still routes to `record_id`."""
        return record_id in self._records_by_id

    def release(self, record_id: int) -> list[str]:
        """
        Drop every key routing to `record_id` (used for finished records that left the history store).
        Returns:
            The released keys.
        """
        keys = [key for key, bound_id in self._ids_by_key.items() if bound_id == record_id]
        for key in keys:
            del self._ids_by_key[key]
        self._records_by_id.pop(record_id, None)
        return keys

    def clear(self) -> list[int]:
        """
        Forget every key, retired mark and routable record (new page load).
        Returns:
            Ids of the records that were routable before the reset.
        """
        dropped_ids = list(self._records_by_id)
        self._ids_by_key.clear()
        self._records_by_id.clear()
        self._retired_keys.clear()
        return dropped_ids
