"""
Breach Tracker - which entities are outside the active geofence right now.

The breach set is rebuilt from scratch every cycle. No first-seen time or
breach duration is kept between cycles.
"""

import logging
from typing import Dict, Iterable, Optional

from trackfence.geofence.evaluator import is_inside
from trackfence.history.store import HistoryStore
from trackfence.models.geofence import GeofencePolygon
from trackfence.models.location import TrackedEntity
from trackfence.models.tracking import Breach

logger = logging.getLogger(__name__)


class BreachTracker:
    """Recomputes the breach set from the History Store each cycle."""

    def __init__(self):
        self._breaches: Dict[str, Breach] = {}

    @property
    def current(self) -> Dict[str, Breach]:
        """Breaches as of the most recent evaluation."""
        return dict(self._breaches)

    def evaluate(
        self,
        entities: Iterable[TrackedEntity],
        store: HistoryStore,
        geofence: Optional[GeofencePolygon],
    ) -> Dict[str, Breach]:
        """
        Rebuild the breach set. Entities without history are skipped, and
        no active geofence means no breaches.
        """
        breaches: Dict[str, Breach] = {}

        if geofence is not None:
            for entity in entities:
                latest = store.latest(entity.id)
                if latest is None:
                    continue
                if is_inside(latest.lat, latest.lon, geofence):
                    continue

                breaches[entity.id] = Breach(
                    entity_id=entity.id,
                    name=entity.name,
                    lat=latest.lat,
                    lon=latest.lon,
                    timestamp=latest.timestamp,
                )
                logger.warning(
                    "Entity %r is outside the geofence at [%s, %s]",
                    entity.name, latest.lat, latest.lon,
                )

        self._breaches = breaches
        return dict(breaches)

    def reset(self) -> None:
        self._breaches = {}
