# engine/geometry.py
import math
from typing import Dict, Iterable, List, Sequence

EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1: float, lng1: float,
                       lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two lat/lng points, in kilometers.
    Distance from a point to itself is exactly 0.
    """
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def point_in_polygon(point: Dict[str, float],
                     vertices: Sequence[Dict[str, float]]) -> bool:
    """
    Ray-casting parity test. A horizontal ray goes from the point towards
    +lng; the point is inside iff it crosses an odd number of edges.

    Vertices are an ordered list of {'lat', 'lng'} dicts, first vertex not
    repeated. Works the same for convex and concave (simple) polygons.
    Empty polygon → always outside.

    The preview count and the cluster assignment both go through this one
    function, so they can never disagree.
    """
    lat = point['lat']
    lng = point['lng']
    inside = False

    j = len(vertices) - 1
    for i in range(len(vertices)):
        yi, xi = vertices[i]['lat'], vertices[i]['lng']
        yj, xj = vertices[j]['lat'], vertices[j]['lng']

        # (yi > lat) != (yj > lat) guarantees yj != yi, no division by zero
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i

    return inside


def polygon_centroid(vertices: Sequence[Dict[str, float]]) -> Dict[str, float]:
    """
    Arithmetic mean of the vertex coordinates.

    Not an area-weighted centroid: good enough to label a drawn cluster
    on the map, and it matches what users expect for rectangles.
    """
    n = len(vertices)
    if n == 0:
        return {'lat': 0.0, 'lng': 0.0}
    return {
        'lat': sum(v['lat'] for v in vertices) / n,
        'lng': sum(v['lng'] for v in vertices) / n,
    }


def bounding_radius(center: Dict[str, float],
                    vertices: Iterable[Dict[str, float]]) -> float:
    """Largest haversine distance (km) from center to any vertex."""
    radius = 0.0
    for v in vertices:
        d = haversine_distance(center['lat'], center['lng'], v['lat'], v['lng'])
        if d > radius:
            radius = d
    return radius


def convex_hull(points: Sequence[Dict[str, float]]) -> List[Dict[str, float]]:
    """
    Monotone-chain convex hull over (lng, lat), counter-clockwise.
    Fewer than 3 distinct points are returned as-is.
    """
    unique = sorted({(p['lng'], p['lat']) for p in points})
    if len(unique) < 3:
        return [{'lat': y, 'lng': x} for x, y in unique]

    def cross(o, a, b):
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])

    lower = []
    for p in unique:
        while len(lower) >= 2 and cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper = []
    for p in reversed(unique):
        while len(upper) >= 2 and cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    hull = lower[:-1] + upper[:-1]
    return [{'lat': y, 'lng': x} for x, y in hull]
