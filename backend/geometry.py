# backend/geometry.py
"""
Planar geometry over lat/lng polygons.

point_in_polygon uses the even-odd ray casting rule with longitude as x and
latitude as y. Polygons with fewer than 3 vertices never contain anything.
"""

from typing import Iterable, List, Optional, Sequence

from .models import Area, RoutePoint


def point_in_polygon(point: RoutePoint, polygon: Sequence[RoutePoint]) -> bool:
    if polygon is None or len(polygon) < 3:
        return False

    x, y = point.lng, point.lat
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].lng, polygon[i].lat
        xj, yj = polygon[j].lng, polygon[j].lat
        if (yi > y) != (yj > y):
            x_cross = (xj - xi) * (y - yi) / (yj - yi) + xi
            if x < x_cross:
                inside = not inside
        j = i
    return inside


def calculate_checkpoint_areas(
    latitude: Optional[float],
    longitude: Optional[float],
    areas: Iterable[Area],
    default_area_id: Optional[str] = None,
) -> List[str]:
    """
    Ids of every area whose polygon contains the point, sorted.
    Falls back to ``default_area_id`` (or the area flagged is_default) when
    nothing contains it or the point is missing.
    """
    areas = list(areas)
    if default_area_id is None:
        default_area_id = next((a.id for a in areas if a.is_default), None)

    hits: List[str] = []
    if latitude is not None and longitude is not None:
        pt = RoutePoint(lat=latitude, lng=longitude)
        hits = sorted(a.id for a in areas if not a.is_default and point_in_polygon(pt, a.polygon))

    if not hits and default_area_id:
        return [default_area_id]
    return hits


def area_containing_point(
    areas: Iterable[Area], latitude: Optional[float], longitude: Optional[float]
) -> Optional[Area]:
    """First area (by id) whose polygon contains the point, or None."""
    if latitude is None or longitude is None:
        return None
    pt = RoutePoint(lat=latitude, lng=longitude)
    for area in sorted(areas, key=lambda a: a.id):
        if point_in_polygon(pt, area.polygon):
            return area
    return None
