"""
Geofence Evaluator - pure geometry over (lat, lon) vertex rings.

Containment uses flat-earth ray casting in IEEE doubles, with no geodesic
correction. That is accurate enough at event scale (a few kilometres) but
degrades for polygons spanning large areas or the antimeridian.

Boundary behaviour is deterministic. The ray is cast towards decreasing
latitude, and an edge counts only when the point's longitude lies in
(min_lon, max_lon]. For an axis-aligned square this means points on the
northern (max lat) and eastern (max lon) sides are inside, and points on the
southern and western sides are outside.
"""

from typing import Optional, Sequence, Tuple, Union

from trackfence.models.geofence import MIN_VERTICES, BoundingBox, GeofencePolygon

Vertices = Sequence[Tuple[float, float]]
PolygonLike = Union[GeofencePolygon, Vertices, None]


def _vertices(polygon: PolygonLike) -> Vertices:
    if polygon is None:
        return ()
    if isinstance(polygon, GeofencePolygon):
        return polygon.vertices
    return polygon


def is_active(polygon: PolygonLike) -> bool:
    """A geofence is active only with at least three vertices."""
    return len(_vertices(polygon)) >= MIN_VERTICES


def is_inside(lat: float, lon: float, polygon: PolygonLike) -> bool:
    """
    Ray-casting point-in-polygon test.

    Returns False unconditionally for fewer than three vertices. Callers
    must treat that as "no active geofence", not as "outside".
    """
    vertices = _vertices(polygon)
    n = len(vertices)
    if n < MIN_VERTICES:
        return False

    inside = False
    p1_lat, p1_lon = vertices[0]
    for i in range(1, n + 1):
        p2_lat, p2_lon = vertices[i % n]

        if min(p1_lon, p2_lon) < lon <= max(p1_lon, p2_lon) and lat <= max(p1_lat, p2_lat):
            # p1_lon != p2_lon is implied by the strict lower bound above
            lat_intersection = (lon - p1_lon) * (p2_lat - p1_lat) / (p2_lon - p1_lon) + p1_lat
            if p1_lat == p2_lat or lat <= lat_intersection:
                inside = not inside

        p1_lat, p1_lon = p2_lat, p2_lon

    return inside


def polygon_bounds(polygon: PolygonLike) -> BoundingBox:
    """Componentwise min/max over all vertices. Empty input gives the zero box."""
    vertices = _vertices(polygon)
    if not vertices:
        return BoundingBox.zero()

    lats = [lat for lat, _ in vertices]
    lons = [lon for _, lon in vertices]
    return BoundingBox(
        min_lat=min(lats),
        max_lat=max(lats),
        min_lon=min(lons),
        max_lon=max(lons),
    )


def containment(lat: float, lon: float, polygon: PolygonLike) -> Optional[bool]:
    """Like is_inside, but None when there is no active geofence to test against."""
    if not is_active(polygon):
        return None
    return is_inside(lat, lon, polygon)
