# discovery/clusters.py
from typing import List

import structlog
from django.db import transaction

from engine import dbscan
from engine.geometry import (
    bounding_radius, convex_hull, point_in_polygon, polygon_centroid,
)
from .errors import NotFound
from .models import Cluster, Lead

log = structlog.get_logger()


def geocoded_leads() -> List[Lead]:
    """Snapshot of every lead with coordinates, taken once per call."""
    return list(
        Lead.objects.filter(latitude__isnull=False, longitude__isnull=False)
        .order_by('id')
    )


def _check_boundary(boundary) -> List[dict]:
    if not isinstance(boundary, list):
        raise ValueError('boundary must be a list of {lat, lng} points')
    try:
        return [{'lat': float(p['lat']), 'lng': float(p['lng'])} for p in boundary]
    except (KeyError, TypeError, ValueError):
        raise ValueError('boundary must be a list of {lat, lng} points')


def leads_in_polygon(leads: List[Lead], boundary: List[dict]) -> List[Lead]:
    return [
        lead for lead in leads
        if point_in_polygon({'lat': lead.latitude, 'lng': lead.longitude}, boundary)
    ]


def _as_points(leads: List[Lead]) -> List[dbscan.GeoPoint]:
    return [
        dbscan.GeoPoint(id=str(lead.id), lat=lead.latitude,
                        lng=lead.longitude, city=lead.city or None)
        for lead in leads
    ]


def run_dbscan(eps_km: float = dbscan.DEFAULT_EPS_KM,
               min_points: int = dbscan.DEFAULT_MIN_POINTS) -> List[dbscan.GeoCluster]:
    """Ephemeral clustering of the current leads. Nothing is written."""
    return dbscan.cluster(
        _as_points(geocoded_leads()), eps_km=eps_km, min_points=min_points
    )


def _store_cluster(name: str, boundary: List[dict], members: List[int],
                   auto: bool) -> Cluster:
    center = polygon_centroid(boundary)
    new = Cluster.objects.create(
        name=name,
        boundary=boundary,
        center_lat=center['lat'],
        center_lng=center['lng'],
        radius_km=bounding_radius(center, boundary),
        lead_count=len(members),
        is_auto_generated=auto,
    )
    Lead.objects.filter(id__in=members).update(cluster=new)
    return new


def save_auto_clusters(eps_km: float = dbscan.DEFAULT_EPS_KM,
                       min_points: int = dbscan.DEFAULT_MIN_POINTS) -> List[Cluster]:
    """
    Persists a DBSCAN run. Previously auto-generated clusters are replaced;
    user-drawn clusters and their leads are left alone. Each cluster's
    boundary is the convex hull of its members.
    """
    with transaction.atomic():
        snapshot = geocoded_leads()
        leads = {str(l.id): l for l in snapshot}
        found = dbscan.cluster(
            _as_points(snapshot), eps_km=eps_km, min_points=min_points
        )

        old = Cluster.objects.filter(is_auto_generated=True)
        Lead.objects.filter(cluster__in=old).update(cluster=None)
        replaced = old.count()
        old.delete()

        saved = []
        for c in found:
            members = [leads[i] for i in c.point_ids]
            hull = convex_hull([{'lat': m.latitude, 'lng': m.longitude} for m in members])
            saved.append(_store_cluster(c.name, hull, [m.id for m in members], auto=True))

    log.info("clusters.auto.saved", saved=len(saved), replaced=replaced)
    return saved


def preview_polygon(boundary) -> dict:
    """How many leads a drawn polygon would take, without writing anything."""
    boundary = _check_boundary(boundary)
    return {'enclosed_count': len(leads_in_polygon(geocoded_leads(), boundary))}


def create_polygon_cluster(name: str, boundary) -> dict:
    """
    Creates a cluster from a user-drawn polygon and assigns every lead
    inside it. A one-off assignment: leads added later are not picked up.
    """
    boundary = _check_boundary(boundary)
    name = (name or '').strip()
    if not name:
        raise ValueError('name is required')

    with transaction.atomic():
        enclosed = leads_in_polygon(geocoded_leads(), boundary)
        new = _store_cluster(name, boundary, [l.id for l in enclosed], auto=False)

    log.info("clusters.polygon.created",
             cluster_id=new.id,
             vertices=len(boundary),
             enclosed=len(enclosed))
    return {'cluster_id': new.id, 'enclosed_count': len(enclosed)}


def delete_cluster(cluster_id: int) -> dict:
    with transaction.atomic():
        try:
            target = Cluster.objects.select_for_update().get(id=cluster_id)
        except Cluster.DoesNotExist:
            raise NotFound(f"Cluster {cluster_id} not found")
        released = Lead.objects.filter(cluster=target).update(cluster=None)
        target.delete()

    log.info("clusters.deleted", cluster_id=cluster_id, released=released)
    return {'released_leads': released}


def list_clusters():
    return Cluster.objects.order_by('-created_at', '-id')
