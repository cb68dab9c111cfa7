"""Geofence polygon and bounding box."""

from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

MIN_VERTICES = 3


class GeofencePolygon(BaseModel):
    """
    A user-defined boundary as an open ring of (lat, lon) vertices.

    The edge from the last vertex back to the first closes the ring
    implicitly. A trailing vertex that duplicates the first one is stripped
    on construction, and fewer than three remaining vertices is rejected,
    so every GeofencePolygon instance is an active geofence.
    """

    model_config = ConfigDict(frozen=True)

    vertices: List[Tuple[float, float]]

    @field_validator("vertices")
    @classmethod
    def _open_ring(cls, vertices: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
        if len(vertices) > 1 and vertices[0] == vertices[-1]:
            vertices = vertices[:-1]
        if len(vertices) < MIN_VERTICES:
            raise ValueError(
                f"Geofence needs at least {MIN_VERTICES} distinct vertices, "
                f"got {len(vertices)}"
            )
        return vertices

    def to_payload(self) -> List[List[float]]:
        """Serializable form: ordered [lat, lon] pairs, no closing duplicate."""
        return [[lat, lon] for lat, lon in self.vertices]


class BoundingBox(BaseModel):
    """Axis-aligned lat/lon box. May degenerate to a single point."""

    model_config = ConfigDict(frozen=True)

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @classmethod
    def zero(cls) -> "BoundingBox":
        return cls(min_lat=0.0, max_lat=0.0, min_lon=0.0, max_lon=0.0)

    @property
    def center(self) -> Tuple[float, float]:
        return (
            (self.min_lat + self.max_lat) / 2,
            (self.min_lon + self.max_lon) / 2,
        )
