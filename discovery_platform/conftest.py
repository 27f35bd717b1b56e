"""Shared test fixtures."""

import pytest

from engine.places import PlaceSource, PlacesError


# A ~10 km tile just west of Guelph, on the global lattice
GUELPH_TILE = {
    'sw_lat': 43.5, 'sw_lng': -80.4,
    'ne_lat': 43.6, 'ne_lng': -80.2,
}


def place(name, lat, lng, city='Guelph', external_id=None):
    return {
        'external_id': external_id or f"pid-{name.lower().replace(' ', '-')}",
        'name': name,
        'address': f"1 Road, {city}, ON N1H 1A1, Canada",
        'city': city,
        'lat': lat,
        'lng': lng,
        'types': ['food'],
        'type': 'farm',
    }


class FakePlaceSource(PlaceSource):
    """
    In-memory place source. answers maps query → list of results
    (or an exception instance to raise for that query).
    """

    name = 'fake'

    def __init__(self, answers=None, default=None):
        self.answers = answers or {}
        self.default = default or []
        self.calls = []
        self.entered = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def search(self, query, viewport):
        self.calls.append((query, dict(viewport)))
        answer = self.answers.get(query, self.default)
        if isinstance(answer, Exception):
            raise answer
        return {'results': list(answer), 'next_page_token': None}


@pytest.fixture
def make_grid(db):
    from discovery import lifecycle

    def _make(name='Test grid', queries=('farm market', 'fruit stand'), **kwargs):
        return lifecycle.create_grid(name=name, queries=list(queries), **kwargs)
    return _make


@pytest.fixture
def grid(make_grid):
    return make_grid()


@pytest.fixture
def cell(grid):
    from discovery import lifecycle
    activated, _ = lifecycle.activate_cell(grid.id, GUELPH_TILE)
    return activated


@pytest.fixture
def fake_source():
    return FakePlaceSource(default=[
        place('Smith Farm', 43.55, -80.3),
        place('Green Acres', 43.52, -80.25),
    ])


@pytest.fixture
def failing_source():
    return FakePlaceSource(default=PlacesError('OVER_QUERY_LIMIT'))
