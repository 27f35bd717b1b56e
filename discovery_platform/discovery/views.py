# discovery/views.py
from django.conf import settings
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from engine.dbscan import DEFAULT_EPS_KM, DEFAULT_MIN_POINTS
from engine.grid import compute_virtual_grid, exclude_known
from . import clusters, lifecycle
from .errors import DiscoveryError
from .models import Grid
from .tasks import run_cell_search, start_cell_search


def _fail(e):
    return Response({'error': str(e)}, status=getattr(e, 'status_code', 400))


def grid_dict(grid):
    return {
        'grid_id': grid.id,
        'name': grid.name,
        'region': grid.region,
        'province': grid.province,
        'queries': grid.queries,
        'cell_size_km': grid.cell_size_km,
        'progress': lifecycle.grid_progress(grid),
        'created_at': grid.created_at,
    }


def cell_dict(cell):
    return {
        'cell_id': cell.id,
        'grid_id': cell.grid_id,
        'parent_id': cell.parent_id,
        'bounds_key': cell.bounds_key,
        **cell.bounds,
        'depth': cell.depth,
        'is_leaf': cell.is_leaf,
        'status': cell.status,
        'result_count': cell.result_count,
        'query_saturation': cell.query_saturation,
        'last_searched_at': cell.last_searched_at,
        'leads_found': cell.leads_found,
        'staleness': lifecycle.staleness(cell),
        'actions': lifecycle.available_actions(cell),
    }


def cluster_dict(c):
    return {
        'cluster_id': c.id,
        'name': c.name,
        'boundary': c.boundary,
        'center_lat': c.center_lat,
        'center_lng': c.center_lng,
        'radius_km': c.radius_km,
        'lead_count': c.lead_count,
        'is_auto_generated': c.is_auto_generated,
        'created_at': c.created_at,
    }


# ── GRIDS ──────────────────────────────────────────────────────────
class GridListView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        grids = Grid.objects.order_by('-created_at')
        return Response([grid_dict(g) for g in grids])

    def post(self, request):
        """
        Input:
        {
            "name": "Niagara",
            "queries": ["farm market", "fruit stand"],
            "region": "Niagara", "province": "Ontario",
            "cell_size_km": 10
        }
        """
        name = (request.data.get('name') or '').strip()
        if not name:
            return Response({'error': 'name is required'}, status=400)
        try:
            grid = lifecycle.create_grid(
                name=name,
                queries=request.data.get('queries', []),
                region=request.data.get('region', ''),
                province=request.data.get('province', ''),
                cell_size_km=float(request.data.get('cell_size_km') or 0) or None,
            )
        except (TypeError, ValueError) as e:
            return Response({'error': str(e)}, status=400)
        return Response(grid_dict(grid), status=201)


class GlobalGridView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        grid, created = lifecycle.get_or_create_global_grid()
        return Response(grid_dict(grid), status=201 if created else 200)


class GridDetailView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, grid_id):
        try:
            grid = lifecycle.get_grid(grid_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response(grid_dict(grid))

    def patch(self, request, grid_id):
        try:
            grid = lifecycle.update_grid_metadata(
                grid_id,
                name=request.data.get('name'),
                region=request.data.get('region'),
                province=request.data.get('province'),
                queries=request.data.get('queries'),
            )
        except DiscoveryError as e:
            return _fail(e)
        except ValueError as e:
            return Response({'error': str(e)}, status=400)
        return Response(grid_dict(grid))

    def delete(self, request, grid_id):
        try:
            result = lifecycle.delete_grid(grid_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response({'status': 'deleted', **result})


# ── CELLS ──────────────────────────────────────────────────────────
class GridCellsView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, grid_id):
        try:
            grid = lifecycle.get_grid(grid_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response({
            'cells': [cell_dict(c) for c in lifecycle.leaf_cells(grid)],
            'activated_keys': lifecycle.activated_bounds_keys(grid),
        })


class VirtualCellsView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, grid_id):
        """
        Input:
        {
            "sw_lat": 43.0, "sw_lng": -80.0, "ne_lat": 43.5, "ne_lng": -79.0,
            "cell_size_km": 10
        }
        Returns the lattice tiles in view that are not active yet.
        """
        try:
            grid = lifecycle.get_grid(grid_id)
        except DiscoveryError as e:
            return _fail(e)

        try:
            viewport = {
                k: float(request.data[k])
                for k in ('sw_lat', 'sw_lng', 'ne_lat', 'ne_lng')
            }
            size = float(request.data.get('cell_size_km') or grid.cell_size_km)
        except (KeyError, TypeError, ValueError):
            return Response(
                {'error': 'sw_lat, sw_lng, ne_lat, ne_lng must be numbers'},
                status=400
            )

        tiles = compute_virtual_grid(
            viewport, size, max_cells=settings.DISCOVERY_VIRTUAL_MAX_CELLS
        )
        tiles = exclude_known(tiles, lifecycle.known_bounds_keys(grid))
        return Response({
            'cell_size_km': size,
            'cells': [t.to_dict() for t in tiles],
        })


class ActivateCellView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, grid_id):
        strict = bool(request.data.get('strict', False))
        try:
            cell, created = lifecycle.activate_cell(
                grid_id, request.data, idempotent=not strict
            )
        except DiscoveryError as e:
            return _fail(e)
        except ValueError as e:
            return Response({'error': str(e)}, status=400)
        return Response(cell_dict(cell), status=201 if created else 200)


class CellDetailView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, cell_id):
        try:
            cell = lifecycle.get_cell(cell_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response({
            **cell_dict(cell),
            'lead_stats': lifecycle.cell_lead_stats(cell),
        })


class CellSearchView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, cell_id):
        """
        Runs one search round over every grid query.
        {"background": true} returns 202 right after the claim.
        """
        try:
            if request.data.get('background'):
                previous = start_cell_search(cell_id)
                return Response(
                    {'cell_id': cell_id, 'status': 'searching', 'previous_status': previous},
                    status=202
                )
            result = run_cell_search(cell_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response(result)


class CellSubdivideView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, cell_id):
        try:
            children = lifecycle.subdivide_cell(cell_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response({
            'parent_id': cell_id,
            'children': [cell_dict(c) for c in children],
        })


class CellUndivideView(APIView):
    permission_classes = [AllowAny]

    def post(self, request, cell_id):
        try:
            result = lifecycle.undivide_cell(cell_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response(result)


class PurgeView(APIView):
    permission_classes = [AllowAny]

    def delete(self, request):
        scope = request.query_params.get('scope', 'cells')
        if scope == 'cells':
            return Response(lifecycle.purge_cells())
        if scope == 'grids':
            return Response(lifecycle.purge_grids())
        return Response({'error': "scope must be 'cells' or 'grids'"}, status=400)


# ── CLUSTERS ───────────────────────────────────────────────────────
class DbscanView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        try:
            eps_km = float(request.data.get('eps_km', DEFAULT_EPS_KM))
            min_points = int(request.data.get('min_points', DEFAULT_MIN_POINTS))
        except (TypeError, ValueError):
            return Response({'error': 'eps_km and min_points must be numbers'}, status=400)

        if request.data.get('save'):
            saved = clusters.save_auto_clusters(eps_km, min_points)
            return Response({'clusters': [cluster_dict(c) for c in saved]}, status=201)

        found = clusters.run_dbscan(eps_km, min_points)
        return Response({'clusters': [c.to_dict() for c in found]})


class ClusterListView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response([cluster_dict(c) for c in clusters.list_clusters()])

    def post(self, request):
        """
        Input:
        {
            "name": "Niagara-on-the-Lake",
            "boundary": [{"lat": 43.2, "lng": -79.2}, ...]
        }
        """
        try:
            result = clusters.create_polygon_cluster(
                request.data.get('name'), request.data.get('boundary')
            )
        except ValueError as e:
            return Response({'error': str(e)}, status=400)
        return Response(result, status=201)


class ClusterPreviewView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        try:
            return Response(clusters.preview_polygon(request.data.get('boundary')))
        except ValueError as e:
            return Response({'error': str(e)}, status=400)


class ClusterDeleteView(APIView):
    permission_classes = [AllowAny]

    def delete(self, request, cluster_id):
        try:
            result = clusters.delete_cluster(cluster_id)
        except DiscoveryError as e:
            return _fail(e)
        return Response({'status': 'deleted', **result})
