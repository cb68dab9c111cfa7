"""
Layered geofence persistence - the event record on the server first, the
local store second.

Behavioral Contract:
- load: the server's geofence wins. A missing, malformed or unreachable
  server payload falls back to the local store.
- save/delete: the server is written first. Only when it accepts the change
  is the local copy updated, so a rejected write leaves both sides as they were.
- Without a remote source, the layered store is a thin async wrapper around
  the local one.
"""

import logging
from typing import Optional, Protocol

from trackfence.models.geofence import GeofencePolygon
from trackfence.persistence.store import PolygonPersistence, parse_polygon_payload
from trackfence.provider.base import ProviderError

logger = logging.getLogger(__name__)


class RemotePolygonSource(Protocol):
    """The event record's geofence field on the tracking server."""

    async def fetch_raw(self, event_id: str) -> Optional[str]: ...

    async def save(self, event_id: str, polygon: GeofencePolygon) -> None: ...

    async def delete(self, event_id: str) -> None: ...


class LayeredPolygonStore:
    def __init__(
        self,
        local: PolygonPersistence,
        remote: Optional[RemotePolygonSource] = None,
    ):
        self.local = local
        self.remote = remote

    async def load(self, event_id: str) -> Optional[GeofencePolygon]:
        if self.remote is not None:
            try:
                raw = await self.remote.fetch_raw(event_id)
            except ProviderError as e:
                logger.warning("Server geofence for event %s unavailable: %s", event_id, e)
                raw = None
            polygon = parse_polygon_payload(raw)
            if polygon is not None:
                return polygon
            logger.debug("Falling back to the local geofence for event %s", event_id)
        return self.local.load(event_id)

    async def save(self, event_id: str, polygon: GeofencePolygon) -> None:
        if self.remote is not None:
            await self.remote.save(event_id, polygon)
        self.local.save(event_id, polygon)

    async def delete(self, event_id: str) -> bool:
        if self.remote is not None:
            await self.remote.delete(event_id)
        return self.local.delete(event_id)
