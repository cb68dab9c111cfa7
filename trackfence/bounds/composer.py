"""
Bounds Composer - merges the geofence and entity positions into one viewport.

The viewport is the union of the active geofence's box and the box around
every entity's latest position, padded outward by a fraction of its range.
"""

from typing import Iterable, Optional, Sequence

from trackfence.geofence.evaluator import PolygonLike, is_active, polygon_bounds
from trackfence.models.geofence import BoundingBox
from trackfence.models.location import LocationSample

DEFAULT_PADDING = 0.1


def points_bounds(points: Sequence[LocationSample]) -> BoundingBox:
    """Componentwise min/max over sample positions. Empty input gives the zero box."""
    if not points:
        return BoundingBox.zero()

    return BoundingBox(
        min_lat=min(p.lat for p in points),
        max_lat=max(p.lat for p in points),
        min_lon=min(p.lon for p in points),
        max_lon=max(p.lon for p in points),
    )


def combine(boxes: Iterable[BoundingBox]) -> BoundingBox:
    """Union of any number of boxes. Empty input gives the zero box."""
    boxes = list(boxes)
    if not boxes:
        return BoundingBox.zero()

    return BoundingBox(
        min_lat=min(b.min_lat for b in boxes),
        max_lat=max(b.max_lat for b in boxes),
        min_lon=min(b.min_lon for b in boxes),
        max_lon=max(b.max_lon for b in boxes),
    )


def pad(box: BoundingBox, fraction: float) -> BoundingBox:
    """
    Expand each axis outward by fraction * range.

    A zero-range axis stays zero-range. Consumers that need a visible area
    around a single point must apply their own minimum zoom.
    """
    lat_pad = (box.max_lat - box.min_lat) * fraction
    lon_pad = (box.max_lon - box.min_lon) * fraction
    return BoundingBox(
        min_lat=box.min_lat - lat_pad,
        max_lat=box.max_lat + lat_pad,
        min_lon=box.min_lon - lon_pad,
        max_lon=box.max_lon + lon_pad,
    )


def derive_viewport(
    polygon: PolygonLike,
    latest_positions: Sequence[LocationSample],
    padding: float = DEFAULT_PADDING,
) -> Optional[BoundingBox]:
    """
    Padded box framing the active geofence and all latest positions.

    Returns None when there is neither an active geofence nor any position,
    meaning the previous viewport should be kept.
    """
    boxes = []
    if is_active(polygon):
        boxes.append(polygon_bounds(polygon))
    if latest_positions:
        boxes.append(points_bounds(latest_positions))

    if not boxes:
        return None
    return pad(combine(boxes), padding)
