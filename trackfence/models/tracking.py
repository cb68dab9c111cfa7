"""Per-cycle tracking output: breaches, entity tracks and published snapshots."""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from trackfence.models.geofence import BoundingBox, GeofencePolygon
from trackfence.models.location import LocationSample


class Breach(BaseModel):
    """An entity whose latest position lies outside the active geofence."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str
    lat: float
    lon: float
    timestamp: Optional[str] = None


class EntityTrack(BaseModel):
    """Latest position and full history of one entity, as of one cycle."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    name: str
    color: str
    latest: Optional[LocationSample] = None
    history: Tuple[LocationSample, ...] = ()
    last_seen: Optional[datetime] = None


class FetchFailure(BaseModel):
    """A per-entity fetch that failed during one cycle."""

    entity_id: str
    name: str
    error: str


class CycleReport(BaseModel):
    """Outcome of one completed refresh cycle."""

    cycle_id: str
    started_at: datetime
    completed_at: datetime
    entity_count: int
    failures: List[FetchFailure] = []
    breach_count: int = 0
    viewport_updated: bool = False


class CycleSnapshot(BaseModel):
    """
    What the rendering layer sees. Published whole, once per completed cycle.

    Before the first cycle completes, cycle_id is None and everything is empty.
    """

    model_config = ConfigDict(frozen=True)

    cycle_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    tracks: Dict[str, EntityTrack] = {}
    breaches: Dict[str, Breach] = {}
    viewport: Optional[BoundingBox] = None
    center: Optional[Tuple[float, float]] = None  # (lat, lon) of the viewport
    geofence: Optional[GeofencePolygon] = None
