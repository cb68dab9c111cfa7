"""
History Store - per-entity location history, replaced wholesale each cycle.

Updated by: the Tracking Engine, once per entity per completed cycle
Queried by: Breach Tracker + Bounds Composer + snapshot publication

Histories are held as tuples, so a reader that obtained one keeps a
consistent view even while the next cycle replaces it.
"""

import threading
from typing import Dict, Iterable, Optional, Sequence, Tuple

from trackfence.models.location import LocationSample

History = Tuple[LocationSample, ...]


class HistoryStore:
    """In-memory history store. Nothing here is persisted."""

    def __init__(self):
        self._histories: Dict[str, History] = {}
        self._lock = threading.Lock()

    def replace(self, entity_id: str, samples: Sequence[LocationSample]) -> None:
        """Swap the entire history of one entity. Never merges with the old one."""
        history = tuple(samples)
        with self._lock:
            self._histories[entity_id] = history

    def replace_many(self, histories: Dict[str, Sequence[LocationSample]]) -> None:
        """Swap several histories under one lock so readers see them together."""
        frozen = {entity_id: tuple(samples) for entity_id, samples in histories.items()}
        with self._lock:
            self._histories.update(frozen)

    def history(self, entity_id: str) -> History:
        """Ordered oldest to newest. Empty when the entity has no history yet."""
        with self._lock:
            return self._histories.get(entity_id, ())

    def latest(self, entity_id: str) -> Optional[LocationSample]:
        """Newest sample, or None when the entity has no history."""
        history = self.history(entity_id)
        return history[-1] if history else None

    def all(self) -> Dict[str, History]:
        """Copy of every entity's history."""
        with self._lock:
            return dict(self._histories)

    def retain(self, entity_ids: Iterable[str]) -> None:
        """Drop histories of entities that are no longer tracked."""
        keep = set(entity_ids)
        with self._lock:
            for entity_id in list(self._histories):
                if entity_id not in keep:
                    del self._histories[entity_id]

    def clear(self) -> None:
        with self._lock:
            self._histories.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)
