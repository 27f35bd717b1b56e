# discovery/lifecycle.py
# ─────────────────────────────────────────────────────────────────
# Cell lifecycle: the only place that writes Grid and Cell rows.
#
#   unsearched ─claim─▶ searching ─record─▶ searched | saturated
#        ▲                  │                      │
#        └──── restore ◀────┘ (search failed)      └─claim─▶ searching
#
#   leaf, depth < MAX_DEPTH ─subdivide─▶ 4 unsearched children
#   depth > 0               ─undivide──▶ parent back to unsearched leaf
#
# Grid counters (searched / saturated / leaf cells / leads found) move in
# the same transaction as the cell status they describe.
# ─────────────────────────────────────────────────────────────────
from datetime import timedelta
from typing import List, Optional

import structlog
from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from engine.db_writer import insert_discovered_leads
from engine.grid import bounds_key, split_bounds
from .errors import InvalidTransition, NotFound
from .models import Cell, Grid, Lead

log = structlog.get_logger()

# ── CONFIGURATION ──────────────────────────────────────────────────
MAX_DEPTH = 4

# (id, label, enabled): one search action per enabled mechanism
DISCOVERY_MECHANISMS = [
    ('google_places', 'Google Places', True),
    ('web_scraper', 'Web Scraping', False),
]

FRESH_DAYS = 30
AGING_DAYS = 90

_STATUS_COUNTER = {
    Cell.SEARCHED: 'searched_count',
    Cell.SATURATED: 'saturated_count',
}


# ── LOOKUPS ────────────────────────────────────────────────────────
def get_grid(grid_id: int, lock: bool = False) -> Grid:
    qs = Grid.objects.select_for_update() if lock else Grid.objects
    try:
        return qs.get(id=grid_id)
    except Grid.DoesNotExist:
        raise NotFound(f"Grid {grid_id} not found")


def get_cell(cell_id: int, lock: bool = False) -> Cell:
    qs = Cell.objects.select_for_update() if lock else Cell.objects
    try:
        return qs.select_related('grid').get(id=cell_id)
    except Cell.DoesNotExist:
        raise NotFound(f"Cell {cell_id} not found")


def _bump(grid_id: int, **deltas):
    changes = {k: F(k) + v for k, v in deltas.items() if v}
    if changes:
        Grid.objects.filter(id=grid_id).update(**changes)


def _status_delta(status: str, sign: int) -> dict:
    counter = _STATUS_COUNTER.get(status)
    return {counter: sign} if counter else {}


# ── DERIVED STATE ──────────────────────────────────────────────────
def available_actions(cell) -> List[dict]:
    """
    What the UI may offer for a cell. Derived from depth only, never stored.
    """
    actions = [
        {'type': 'search', 'mechanism': mech_id}
        for mech_id, _, enabled in DISCOVERY_MECHANISMS
        if enabled
    ]
    if cell.depth < MAX_DEPTH:
        actions.append({'type': 'subdivide'})
    if cell.depth > 0:
        actions.append({'type': 'undivide'})
    return actions


def freshness_bucket(timestamp, now=None) -> Optional[str]:
    """
    fresh (< 30 days), aging (<= 90 days) or stale. Same buckets for cell
    searches and for lead enrichment. None if it never happened.
    """
    if timestamp is None:
        return None
    now = now or timezone.now()
    age = now - timestamp
    if age < timedelta(days=FRESH_DAYS):
        return 'fresh'
    if age <= timedelta(days=AGING_DAYS):
        return 'aging'
    return 'stale'


def staleness(cell, now=None) -> Optional[str]:
    return freshness_bucket(cell.last_searched_at, now)


# ── GRIDS ──────────────────────────────────────────────────────────
def create_grid(name: str, queries: List[str], region: str = '',
                province: str = '', cell_size_km: Optional[float] = None) -> Grid:
    grid = Grid.objects.create(
        name=name,
        region=region,
        province=province,
        queries=_clean_queries(queries),
        cell_size_km=cell_size_km or settings.DISCOVERY_DEFAULT_CELL_SIZE_KM,
    )
    log.info("grid.created", grid_id=grid.id, name=name)
    return grid


def get_or_create_global_grid():
    """The single map-wide grid the discovery view works against."""
    with transaction.atomic():
        grid = Grid.objects.order_by('id').first()
        if grid:
            return grid, False
        grid = create_grid(
            name='Discovery',
            region='Ontario',
            province='Ontario',
            queries=list(settings.DISCOVERY_DEFAULT_QUERIES),
        )
        return grid, True


def _clean_queries(queries) -> List[str]:
    if not isinstance(queries, (list, tuple)):
        raise ValueError('queries must be a list of strings')
    return [q.strip() for q in queries if isinstance(q, str) and q.strip()]


def update_grid_metadata(grid_id: int, name: Optional[str] = None,
                         region: Optional[str] = None,
                         province: Optional[str] = None,
                         queries: Optional[List[str]] = None) -> Grid:
    fields = {}
    if name is not None:
        fields['name'] = name.strip()
    if region is not None:
        fields['region'] = region.strip()
    if province is not None:
        fields['province'] = province.strip()
    if queries is not None:
        fields['queries'] = _clean_queries(queries)

    with transaction.atomic():
        grid = get_grid(grid_id, lock=True)
        for k, v in fields.items():
            setattr(grid, k, v)
        if fields:
            grid.save(update_fields=list(fields))

    log.info("grid.updated", grid_id=grid_id, fields=sorted(fields))
    return grid


def delete_grid(grid_id: int) -> dict:
    with transaction.atomic():
        grid = get_grid(grid_id, lock=True)
        cells = grid.cells.count()
        grid.delete()
    log.info("grid.deleted", grid_id=grid_id, cells=cells)
    return {'deleted_cells': cells}


def grid_progress(grid: Grid) -> dict:
    searching = grid.cells.filter(is_leaf=True, status=Cell.SEARCHING).count()
    done = grid.searched_count + grid.saturated_count
    return {
        'total_leaf_cells': grid.total_leaf_cells,
        'searched_count': grid.searched_count,
        'saturated_count': grid.saturated_count,
        'searching_count': searching,
        'unsearched_count': max(grid.total_leaf_cells - done - searching, 0),
        'total_leads_found': grid.total_leads_found,
        'percent_complete': (
            int(done / grid.total_leaf_cells * 100) if grid.total_leaf_cells else 0
        ),
    }


# ── CELLS ──────────────────────────────────────────────────────────
def leaf_cells(grid: Grid):
    return grid.cells.filter(is_leaf=True).order_by('depth', 'id')


def activated_bounds_keys(grid: Grid) -> List[str]:
    """Keys of the root tiles, whether or not they were subdivided since."""
    return list(
        grid.cells.filter(depth=0).values_list('bounds_key', flat=True)
    )


def known_bounds_keys(grid: Grid) -> set:
    return set(
        grid.cells.filter(Q(depth=0) | Q(is_leaf=True))
        .values_list('bounds_key', flat=True)
    )


def _check_bounds(bounds: dict) -> dict:
    try:
        b = {k: float(bounds[k]) for k in ('sw_lat', 'sw_lng', 'ne_lat', 'ne_lng')}
    except (KeyError, TypeError, ValueError):
        raise ValueError('bounds need numeric sw_lat, sw_lng, ne_lat, ne_lng')
    if not (-90 <= b['sw_lat'] < b['ne_lat'] <= 90) or not (b['sw_lng'] < b['ne_lng']):
        raise ValueError('bounds must have sw strictly south-west of ne')
    return b


def activate_cell(grid_id: int, bounds: dict, idempotent: bool = True):
    """
    Materializes a virtual tile as a depth-0 unsearched cell.

    The bounds key is always derived from the bounds. If the key is already
    active the existing cell comes back (idempotent=True) or the call is
    rejected. Returns (cell, created).
    """
    b = _check_bounds(bounds)
    key = bounds_key(b['sw_lat'], b['sw_lng'])

    with transaction.atomic():
        grid = get_grid(grid_id, lock=True)
        existing = grid.cells.filter(depth=0, bounds_key=key).first()
        if existing:
            if not idempotent:
                raise InvalidTransition(f"Cell {key} is already active")
            return existing, False

        cell = Cell.objects.create(
            grid=grid, depth=0, bounds_key=key, status=Cell.UNSEARCHED, **b
        )
        _bump(grid.id, total_leaf_cells=1)

    log.info("cell.activated", grid_id=grid_id, cell_id=cell.id, bounds_key=key)
    return cell, True


def claim_cell_for_search(cell_id: int) -> str:
    """
    unsearched | searched | saturated → searching. Returns the status the
    cell had, so a failed round can put it back.
    """
    with transaction.atomic():
        cell = get_cell(cell_id, lock=True)
        if not cell.is_leaf:
            raise InvalidTransition("Cell has been subdivided; search its children")
        if cell.status == Cell.SEARCHING:
            raise InvalidTransition("Cell is already being searched")
        if not cell.grid.queries:
            raise InvalidTransition("Grid has no search queries")

        previous = cell.status
        cell.status = Cell.SEARCHING
        cell.save(update_fields=['status'])
        _bump(cell.grid_id, **_status_delta(previous, -1))

    log.info("cell.claimed", cell_id=cell_id, previous_status=previous)
    return previous


def restore_status(cell_id: int, status: str):
    """Undo a claim after a failed search round."""
    with transaction.atomic():
        cell = get_cell(cell_id, lock=True)
        if cell.status != Cell.SEARCHING:
            log.warning("cell.restore.skipped", cell_id=cell_id, status=cell.status)
            return cell
        cell.status = status
        cell.save(update_fields=['status'])
        _bump(cell.grid_id, **_status_delta(status, +1))

    log.info("cell.restored", cell_id=cell_id, status=status)
    return cell


def record_search_result(cell_id: int, status: str, result_count: int,
                         query_saturation: List[dict], leads: List[dict]) -> dict:
    """
    Closes a search round: searching → searched | saturated.

    Inserts the round's leads (dedup applied), stores the round stats on the
    cell and adds only the newly inserted leads to the grid total, all in
    one transaction.
    """
    if status not in (Cell.SEARCHED, Cell.SATURATED):
        raise InvalidTransition(f"A search round cannot end in '{status}'")

    with transaction.atomic():
        cell = get_cell(cell_id, lock=True)
        if cell.status != Cell.SEARCHING:
            raise InvalidTransition(
                f"Cell is '{cell.status}', expected 'searching'"
            )

        for lead in leads:
            lead['discovery_cell_id'] = cell.id
        written = insert_discovered_leads(leads)

        cell.status = status
        cell.result_count = result_count
        cell.query_saturation = query_saturation
        cell.last_searched_at = timezone.now()
        cell.leads_found = (cell.leads_found or 0) + written['inserted']
        cell.save(update_fields=[
            'status', 'result_count', 'query_saturation',
            'last_searched_at', 'leads_found',
        ])
        _bump(
            cell.grid_id,
            total_leads_found=written['inserted'],
            **_status_delta(status, +1),
        )

    log.info("cell.search.recorded",
             cell_id=cell_id,
             status=status,
             result_count=result_count,
             new_leads=written['inserted'],
             duplicates=written['skipped'])
    return written


def subdivide_cell(cell_id: int) -> List[Cell]:
    """
    Splits a leaf into its 4 quadrants at depth + 1. The parent stays as an
    inert, non-leaf record so undivide can bring it back.
    Calling it again on an already split cell returns the same children.
    """
    with transaction.atomic():
        cell = get_cell(cell_id, lock=True)
        children = list(cell.children.order_by('id'))
        if children:
            return children
        if cell.status == Cell.SEARCHING:
            raise InvalidTransition("Cannot subdivide while cell is being searched")
        if cell.depth >= MAX_DEPTH:
            raise InvalidTransition("Cell is already at maximum depth")

        children = [
            Cell.objects.create(
                grid_id=cell.grid_id,
                parent=cell,
                depth=cell.depth + 1,
                status=Cell.UNSEARCHED,
                bounds_key=bounds_key(q['sw_lat'], q['sw_lng']),
                **q
            )
            for q in split_bounds(cell.bounds)
        ]
        cell.is_leaf = False
        cell.save(update_fields=['is_leaf'])
        _bump(cell.grid_id, total_leaf_cells=3, **_status_delta(cell.status, -1))

    log.info("cell.subdivided",
             cell_id=cell_id,
             depth=cell.depth,
             children=[c.id for c in children])
    return children


def _descendants(cell: Cell) -> List[Cell]:
    found = []
    queue = [cell.id]
    while queue:
        current = queue.pop(0)
        for child in Cell.objects.select_for_update().filter(parent_id=current):
            found.append(child)
            queue.append(child.id)
    return found


def undivide_cell(cell_id: int) -> dict:
    """
    Collapses a subdivided area back into the parent of cell_id: every
    descendant of the parent is deleted and the parent becomes an
    unsearched leaf again. Leads found in the deleted cells move to the
    parent. Not available for root cells.
    """
    with transaction.atomic():
        cell = get_cell(cell_id, lock=True)
        if cell.depth == 0 or cell.parent_id is None:
            raise InvalidTransition("Root cells cannot be undivided")

        parent = get_cell(cell.parent_id, lock=True)
        descendants = _descendants(parent)
        if any(d.status == Cell.SEARCHING for d in descendants):
            raise InvalidTransition("Cannot undivide while a child cell is being searched")

        leaves = [d for d in descendants if d.is_leaf]
        ids = [d.id for d in descendants]
        Lead.objects.filter(discovery_cell_id__in=ids).update(discovery_cell=parent)
        Cell.objects.filter(id__in=ids).delete()

        parent.is_leaf = True
        parent.status = Cell.UNSEARCHED
        parent.result_count = None
        parent.query_saturation = []
        parent.last_searched_at = None
        parent.leads_found = parent.leads.count()
        parent.save()

        _bump(
            parent.grid_id,
            total_leaf_cells=1 - len(leaves),
            searched_count=-sum(1 for d in leaves if d.status == Cell.SEARCHED),
            saturated_count=-sum(1 for d in leaves if d.status == Cell.SATURATED),
        )

    log.info("cell.undivided",
             cell_id=cell_id,
             parent_id=parent.id,
             deleted=len(ids))
    return {'parent_id': parent.id, 'deleted_count': len(ids)}


def cell_lead_stats(cell: Cell) -> dict:
    """Completeness of the leads discovered in one cell."""
    total = location_complete = web_presence = directory_ready = 0
    freshness = {'fresh': 0, 'aging': 0, 'stale': 0, 'never': 0}
    now = timezone.now()

    for lead in cell.leads.all():
        total += 1
        is_located = all([
            lead.address, lead.city, lead.province or lead.region,
            lead.postal_code, lead.country_code,
            lead.latitude is not None, lead.longitude is not None,
        ])
        has_web = bool(lead.website)
        location_complete += is_located
        web_presence += has_web
        directory_ready += is_located and has_web
        freshness[freshness_bucket(lead.enriched_at, now) or 'never'] += 1

    return {
        'total': total,
        'location_complete': location_complete,
        'has_web_presence': web_presence,
        'directory_ready': directory_ready,
        'enrichment_freshness': freshness,
    }


# ── PURGE ──────────────────────────────────────────────────────────
def purge_cells() -> dict:
    with transaction.atomic():
        deleted = Cell.objects.count()
        Cell.objects.all().delete()
        Grid.objects.update(
            searched_count=0, saturated_count=0,
            total_leaf_cells=0, total_leads_found=0,
        )
    log.info("grid.cells.purged", deleted=deleted)
    return {'deleted_cells': deleted}


def purge_grids() -> dict:
    with transaction.atomic():
        cells = purge_cells()['deleted_cells']
        grids = Grid.objects.count()
        Grid.objects.all().delete()
    log.info("grid.purged", deleted_cells=cells, deleted_grids=grids)
    return {'deleted_cells': cells, 'deleted_grids': grids}
