"""Read-through cache for report inputs.

The engine is stateless; this is the caller-owned snapshot the HTTP layer
reads through. It is cleared whenever a session that wrote ledger movements
commits or rolls back.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Hashable

from stockledger.services import ledger

logger = logging.getLogger(__name__)


class SnapshotCache:
    def __init__(self):
        self._data: dict[Hashable, Any] = {}
        self._lock = threading.Lock()
        self._generation = 0
        self.hits = 0
        self.misses = 0

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._data:
                self.hits += 1
                return self._data[key]
            generation = self._generation
        value = compute()
        with self._lock:
            self.misses += 1
            # a write committed while computing: the value may predate it, so don't keep it
            if generation == self._generation:
                self._data[key] = value
        return value

    def invalidate(self, product_ids: set[str] | None = None) -> None:
        with self._lock:
            self._generation += 1
            if self._data:
                logger.debug("snapshot cache cleared (%d entries, products=%s)", len(self._data), product_ids)
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


snapshots = SnapshotCache()
ledger.on_change(snapshots.invalidate)
