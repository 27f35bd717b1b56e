# engine/dbscan.py
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import structlog
from sklearn.cluster import DBSCAN

from .geometry import EARTH_RADIUS_KM

log = structlog.get_logger()

DEFAULT_EPS_KM = 15
DEFAULT_MIN_POINTS = 3
UNKNOWN_CITY = 'Unknown'
NOISE = -1


@dataclass
class GeoPoint:
    id: str
    lat: float
    lng: float
    city: Optional[str] = None


@dataclass
class GeoCluster:
    name: str
    point_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {'name': self.name, 'point_ids': list(self.point_ids)}


def km_to_radians(km: float) -> float:
    return km / EARTH_RADIUS_KM


def label_points(points: Sequence[GeoPoint], eps_km: float = DEFAULT_EPS_KM,
                 min_points: int = DEFAULT_MIN_POINTS) -> np.ndarray:
    """
    One DBSCAN label per point (-1 = noise), in input order.

    min_samples counts the point itself, which is the usual DBSCAN
    definition of a core point. Border points join the first cluster
    whose core point reaches them.
    """
    if not points or eps_km <= 0 or min_points < 1:
        return np.full(len(points), NOISE, dtype=int)

    coords = np.radians(np.array([[p.lat, p.lng] for p in points], dtype=float))
    model = DBSCAN(
        eps=km_to_radians(eps_km),
        min_samples=min_points,
        metric='haversine',
        algorithm='ball_tree',
    )
    return model.fit_predict(coords)


def most_frequent_city(members: Sequence[GeoPoint]) -> str:
    # Counter keeps first-seen order on ties
    counts = Counter((p.city or UNKNOWN_CITY) for p in members)
    if not counts:
        return UNKNOWN_CITY
    return counts.most_common(1)[0][0]


def cluster(points: Sequence[GeoPoint], eps_km: float = DEFAULT_EPS_KM,
            min_points: int = DEFAULT_MIN_POINTS) -> List[GeoCluster]:
    """
    Groups geocoded points into named clusters.

    Noise points are left out. Each cluster is named after its most common
    city. No points, or nothing dense enough → [].
    """
    points = list(points)
    labels = label_points(points, eps_km, min_points)

    groups = {}
    for point, label in zip(points, labels):
        if label == NOISE:
            continue
        groups.setdefault(int(label), []).append(point)

    clusters = [
        GeoCluster(
            name=most_frequent_city(members),
            point_ids=[m.id for m in members],
        )
        for _, members in sorted(groups.items())
    ]

    log.info("clusters.dbscan",
             points=len(points),
             clusters=len(clusters),
             noise=int(np.sum(labels == NOISE)) if len(labels) else 0,
             eps_km=eps_km,
             min_points=min_points)
    return clusters
