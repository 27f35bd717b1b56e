"""Tests for the virtual grid tiler and quadrant splitting."""

import math

import pytest

from engine.grid import (
    KM_PER_DEGREE_LAT, bounds_key, compute_virtual_grid, contains,
    exclude_known, search_circle, split_bounds,
)
from engine.geometry import haversine_distance

GUELPH_VIEW = {'sw_lat': 43.4, 'sw_lng': -80.5, 'ne_lat': 43.7, 'ne_lng': -80.1}


def test_bounds_key_format():
    assert bounds_key(43.5, -80.4) == '43.500000_-80.400000'
    assert bounds_key(43.1234567, -79.0) == '43.123457_-79.000000'


def test_tiles_are_deterministic():
    first = compute_virtual_grid(GUELPH_VIEW, 10)
    second = compute_virtual_grid(dict(GUELPH_VIEW), 10)
    assert first
    assert [c.key for c in first] == [c.key for c in second]


def test_tiles_cover_the_viewport():
    cells = compute_virtual_grid(GUELPH_VIEW, 10)
    assert min(c.sw_lat for c in cells) <= GUELPH_VIEW['sw_lat']
    assert max(c.ne_lat for c in cells) >= GUELPH_VIEW['ne_lat']
    assert min(c.sw_lng for c in cells) <= GUELPH_VIEW['sw_lng']
    assert max(c.ne_lng for c in cells) >= GUELPH_VIEW['ne_lng']


def test_tiles_are_about_cell_size():
    for c in compute_virtual_grid(GUELPH_VIEW, 10):
        assert c.ne_lat - c.sw_lat == pytest.approx(10 / KM_PER_DEGREE_LAT)
        mid_lat = (c.sw_lat + c.ne_lat) / 2
        width = haversine_distance(mid_lat, c.sw_lng, mid_lat, c.ne_lng)
        assert width == pytest.approx(10, rel=0.01)


def test_tiles_are_contiguous():
    cells = compute_virtual_grid(GUELPH_VIEW, 10)
    rows = {}
    for c in cells:
        rows.setdefault(c.sw_lat, []).append(c)

    row_edges = sorted(rows)
    for lower, upper in zip(row_edges, row_edges[1:]):
        assert rows[lower][0].ne_lat == upper

    for row in rows.values():
        row.sort(key=lambda c: c.sw_lng)
        for left, right in zip(row, row[1:]):
            assert left.ne_lng == right.sw_lng


def test_keys_are_unique():
    cells = compute_virtual_grid(GUELPH_VIEW, 5)
    assert len({c.key for c in cells}) == len(cells)


def test_overlapping_viewports_share_keys():
    panned = {'sw_lat': 43.5, 'sw_lng': -80.3, 'ne_lat': 43.8, 'ne_lng': -79.9}
    a = {c.key: c for c in compute_virtual_grid(GUELPH_VIEW, 10)}
    b = {c.key: c for c in compute_virtual_grid(panned, 10)}
    shared = set(a) & set(b)
    assert shared
    for key in shared:
        assert a[key] == b[key]


def test_activated_key_is_excluded_on_next_pass():
    cells = compute_virtual_grid(GUELPH_VIEW, 10)
    activated = cells[3].key
    again = exclude_known(compute_virtual_grid(GUELPH_VIEW, 10), {activated})
    assert len(again) == len(cells) - 1
    assert activated not in {c.key for c in again}


@pytest.mark.parametrize('viewport,size', [
    ({'sw_lat': 43.4, 'sw_lng': -80.5, 'ne_lat': 43.4, 'ne_lng': -80.1}, 10),
    ({'sw_lat': 43.4, 'sw_lng': -80.5, 'ne_lat': 43.7, 'ne_lng': -80.5}, 10),
    ({'sw_lat': 43.7, 'sw_lng': -80.5, 'ne_lat': 43.4, 'ne_lng': -80.1}, 10),
    (GUELPH_VIEW, 0),
    (GUELPH_VIEW, -5),
    (GUELPH_VIEW, math.nan),
    ({'sw_lat': math.nan, 'sw_lng': -80.5, 'ne_lat': 43.7, 'ne_lng': -80.1}, 10),
    ({'sw_lat': 43.4}, 10),
])
def test_degenerate_input_gives_no_tiles(viewport, size):
    assert compute_virtual_grid(viewport, size) == []


def test_too_many_tiles_gives_nothing():
    ontario = {'sw_lat': 41.7, 'sw_lng': -95.2, 'ne_lat': 56.9, 'ne_lng': -74.3}
    assert compute_virtual_grid(ontario, 10) == []
    assert compute_virtual_grid(ontario, 10, max_cells=100000)


def test_split_bounds_tiles_parent_exactly():
    parent = {'sw_lat': 43.5, 'sw_lng': -80.4, 'ne_lat': 43.6, 'ne_lng': -80.2}
    sw, se, nw, ne = split_bounds(parent)

    assert sw['sw_lat'] == parent['sw_lat'] and sw['sw_lng'] == parent['sw_lng']
    assert ne['ne_lat'] == parent['ne_lat'] and ne['ne_lng'] == parent['ne_lng']
    assert se['sw_lng'] == sw['ne_lng'] and nw['sw_lat'] == sw['ne_lat']
    assert ne['sw_lat'] == se['ne_lat'] and ne['sw_lng'] == nw['ne_lng']

    area = sum((q['ne_lat'] - q['sw_lat']) * (q['ne_lng'] - q['sw_lng'])
               for q in (sw, se, nw, ne))
    assert area == pytest.approx(0.1 * 0.2)


def test_search_circle_reaches_every_corner():
    box = {'sw_lat': 43.5, 'sw_lng': -80.4, 'ne_lat': 43.6, 'ne_lng': -80.2}
    circle = search_circle(box)
    for lat in (box['sw_lat'], box['ne_lat']):
        for lng in (box['sw_lng'], box['ne_lng']):
            d = haversine_distance(circle['lat'], circle['lng'], lat, lng)
            assert d <= circle['radius_km'] * 1.001


def test_contains_includes_edges():
    box = {'sw_lat': 0, 'sw_lng': 0, 'ne_lat': 1, 'ne_lng': 1}
    assert contains(box, 0, 0)
    assert contains(box, 0.5, 1)
    assert not contains(box, 1.01, 0.5)
