"""trackfence data models."""

from trackfence.models.config import EngineConfig, RefreshInterval, SchedulerState
from trackfence.models.geofence import BoundingBox, GeofencePolygon
from trackfence.models.location import LocationSample, TrackedEntity
from trackfence.models.tracking import (
    Breach,
    CycleReport,
    CycleSnapshot,
    EntityTrack,
    FetchFailure,
)

__all__ = [
    "BoundingBox",
    "Breach",
    "CycleReport",
    "CycleSnapshot",
    "EngineConfig",
    "EntityTrack",
    "FetchFailure",
    "GeofencePolygon",
    "LocationSample",
    "RefreshInterval",
    "SchedulerState",
    "TrackedEntity",
]
