import math
from typing import Any, Dict, List, Optional, Sequence, Tuple


def _haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Return great-circle distance between two (lat, lon) points in kilometers."""
    lat1, lon1 = a
    lat2, lon2 = b
    R = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    x = math.sin(dphi/2)**2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda/2)**2
    return 2 * R * math.asin(math.sqrt(x))


def distance_m(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return _haversine_km(a, b) * 1000.0


def point_lat_lng(point: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    """(lat, lng) of a GeoJSON Point, which stores [lng, lat]."""
    if not point:
        return None
    coords = point.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) != 2:
        return None
    try:
        return float(coords[1]), float(coords[0])
    except (TypeError, ValueError):
        return None


def point_in_polygon(lat: float, lng: float, ring: Sequence[Sequence[float]]) -> bool:
    """Ray casting over a GeoJSON ring of [lng, lat] pairs."""
    inside = False
    n = len(ring)
    if n < 3:
        return False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / ((yj - yi) or 1e-12) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside


def within_radius(items: List[Dict[str, Any]], origin: Tuple[float, float], radius_m: float, key) -> List[Dict[str, Any]]:
    """Keep items whose ``key(item)`` (lat, lng) lies within ``radius_m`` of origin."""
    out = []
    for item in items:
        pos = key(item)
        if pos is None:
            continue
        if distance_m(origin, pos) <= radius_m:
            out.append(item)
    return out
