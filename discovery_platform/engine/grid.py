# engine/grid.py
import math
from dataclasses import dataclass, asdict
from typing import Dict, Iterable, List
import structlog

from .geometry import haversine_distance

log = structlog.get_logger()

KM_PER_DEGREE_LAT = 111.32
DEFAULT_MAX_CELLS = 500


@dataclass
class VirtualCell:
    sw_lat: float
    sw_lng: float
    ne_lat: float
    ne_lng: float
    key: str

    def to_dict(self) -> dict:
        return asdict(self)


def bounds_key(sw_lat: float, sw_lng: float) -> str:
    """
    Stable identity of a tile, derived only from its south-west corner.
    Persisted cells and virtual cells share it so they can be matched.
    """
    return f"{sw_lat:.6f}_{sw_lng:.6f}"


def _valid_viewport(viewport: dict) -> bool:
    try:
        values = [float(viewport[k]) for k in ('sw_lat', 'sw_lng', 'ne_lat', 'ne_lng')]
    except (KeyError, TypeError, ValueError):
        return False
    if not all(math.isfinite(v) for v in values):
        return False
    sw_lat, sw_lng, ne_lat, ne_lng = values
    return ne_lat > sw_lat and ne_lng > sw_lng


def compute_virtual_grid(viewport: dict, cell_size_km: float,
                         max_cells: int = DEFAULT_MAX_CELLS) -> List[VirtualCell]:
    """
    Tiles the viewport with ~cell_size_km square cells.

    Tiles are snapped to a global lattice anchored at (0, 0): rows are
    cell_size_km / 111.32 degrees tall, and every row gets its own
    longitude step, corrected with the cosine of the row's mid latitude.
    Nothing depends on the viewport except which tiles are included, so
    panning away and back (or two overlapping viewports) yields the same
    keys for the same ground.

    Zero-area viewport, non-positive size or more than max_cells tiles
    → [] (nothing to show, not an error).
    """
    try:
        cell_size_km = float(cell_size_km)
    except (TypeError, ValueError):
        return []
    if not math.isfinite(cell_size_km) or cell_size_km <= 0:
        return []
    if not _valid_viewport(viewport):
        return []

    sw_lat = max(float(viewport['sw_lat']), -90.0)
    ne_lat = min(float(viewport['ne_lat']), 90.0)
    sw_lng = float(viewport['sw_lng'])
    ne_lng = float(viewport['ne_lng'])
    if ne_lat <= sw_lat:
        return []

    lat_step = cell_size_km / KM_PER_DEGREE_LAT
    first_row = math.floor(sw_lat / lat_step)
    last_row = math.ceil(ne_lat / lat_step)

    # Plan rows first so an oversized viewport is rejected before building
    rows = []
    total = 0
    for r in range(first_row, last_row):
        row_sw = r * lat_step
        row_ne = (r + 1) * lat_step
        mid_lat = min(max((row_sw + row_ne) / 2, -89.9), 89.9)
        lng_step = cell_size_km / (KM_PER_DEGREE_LAT * math.cos(math.radians(mid_lat)))
        first_col = math.floor(sw_lng / lng_step)
        last_col = math.ceil(ne_lng / lng_step)
        rows.append((row_sw, row_ne, lng_step, first_col, last_col))
        total += last_col - first_col
        if total > max_cells:
            log.info("grid.virtual.too_many",
                     cell_size_km=cell_size_km,
                     max_cells=max_cells)
            return []

    cells = []
    for row_sw, row_ne, lng_step, first_col, last_col in rows:
        for c in range(first_col, last_col):
            cell_sw_lng = c * lng_step
            cells.append(VirtualCell(
                sw_lat=row_sw,
                sw_lng=cell_sw_lng,
                ne_lat=row_ne,
                ne_lng=(c + 1) * lng_step,
                key=bounds_key(row_sw, cell_sw_lng),
            ))

    log.debug("grid.virtual.built",
              cell_size_km=cell_size_km,
              total_cells=len(cells))
    return cells


def exclude_known(cells: Iterable[VirtualCell], known_keys: Iterable[str]) -> List[VirtualCell]:
    """Drops tiles already activated or persisted."""
    known = set(known_keys)
    return [c for c in cells if c.key not in known]


def split_bounds(bounds: dict) -> List[Dict[str, float]]:
    """
    The four quadrants of a box, in SW, SE, NW, NE order.
    They tile the parent exactly: shared edges use the same midpoint value.
    """
    mid_lat = (bounds['sw_lat'] + bounds['ne_lat']) / 2
    mid_lng = (bounds['sw_lng'] + bounds['ne_lng']) / 2
    return [
        {'sw_lat': bounds['sw_lat'], 'sw_lng': bounds['sw_lng'],
         'ne_lat': mid_lat, 'ne_lng': mid_lng},
        {'sw_lat': bounds['sw_lat'], 'sw_lng': mid_lng,
         'ne_lat': mid_lat, 'ne_lng': bounds['ne_lng']},
        {'sw_lat': mid_lat, 'sw_lng': bounds['sw_lng'],
         'ne_lat': bounds['ne_lat'], 'ne_lng': mid_lng},
        {'sw_lat': mid_lat, 'sw_lng': mid_lng,
         'ne_lat': bounds['ne_lat'], 'ne_lng': bounds['ne_lng']},
    ]


def search_circle(bounds: dict) -> Dict[str, float]:
    """
    Center of a box plus the circumscribed radius (center → NE corner),
    so a radius-biased search covers the whole tile.
    """
    center_lat = (bounds['sw_lat'] + bounds['ne_lat']) / 2
    center_lng = (bounds['sw_lng'] + bounds['ne_lng']) / 2
    return {
        'lat': center_lat,
        'lng': center_lng,
        'radius_km': haversine_distance(center_lat, center_lng,
                                        bounds['ne_lat'], bounds['ne_lng']),
    }


def contains(bounds: dict, lat: float, lng: float) -> bool:
    return (bounds['sw_lat'] <= lat <= bounds['ne_lat']
            and bounds['sw_lng'] <= lng <= bounds['ne_lng'])
