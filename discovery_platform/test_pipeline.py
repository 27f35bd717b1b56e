"""Tests for the per-cell query fan-out."""

import asyncio

import pytest

from conftest import GUELPH_TILE, FakePlaceSource, place
from engine.pipeline import build_leads, is_saturated, search_cell_queries
from engine.places import (
    GooglePlacesSource, PlacesError, extract_city, infer_lead_type, parse_place,
)


def run(coro):
    return asyncio.run(coro)


def test_every_query_runs_on_one_session():
    source = FakePlaceSource(default=[place('Smith Farm', 43.55, -80.3)])
    result = run(search_cell_queries(source, ['farm market', 'fruit stand'], GUELPH_TILE))

    assert source.entered == 1
    assert [q for q, _ in source.calls] == ['farm market', 'fruit stand']
    assert result['query_saturation'] == [
        {'query': 'farm market', 'count': 1},
        {'query': 'fruit stand', 'count': 1},
    ]
    assert result['result_count'] == 2


def test_duplicate_places_across_queries_kept_once():
    shared = place('Smith Farm', 43.55, -80.3)
    source = FakePlaceSource(answers={
        'farm market': [shared, place('Green Acres', 43.52, -80.25)],
        'fruit stand': [shared],
    })
    result = run(search_cell_queries(source, ['farm market', 'fruit stand'], GUELPH_TILE))
    assert [p['name'] for p in result['places']] == ['Smith Farm', 'Green Acres']


def test_out_of_bounds_and_unlocated_results_dropped():
    source = FakePlaceSource(default=[
        place('Inside', 43.55, -80.3),
        place('Toronto Shop', 43.65, -79.38),
        {**place('No Location', 0, 0), 'lat': None, 'lng': None},
    ])
    result = run(search_cell_queries(source, ['farm market'], GUELPH_TILE))

    assert [p['name'] for p in result['places']] == ['Inside']
    # saturation is judged on what the source returned
    assert result['query_saturation'] == [{'query': 'farm market', 'count': 3}]


def test_one_failing_query_fails_the_round():
    source = FakePlaceSource(answers={
        'farm market': [place('Smith Farm', 43.55, -80.3)],
        'fruit stand': PlacesError('OVER_QUERY_LIMIT'),
    })
    with pytest.raises(PlacesError, match='OVER_QUERY_LIMIT'):
        run(search_cell_queries(source, ['farm market', 'fruit stand'], GUELPH_TILE))


def test_unexpected_errors_become_places_errors():
    source = FakePlaceSource(default=RuntimeError('boom'))
    with pytest.raises(PlacesError, match='boom'):
        run(search_cell_queries(source, ['farm market'], GUELPH_TILE))


def test_saturation_is_any_query_at_threshold():
    assert is_saturated([{'query': 'a', 'count': 60}, {'query': 'b', 'count': 3}], 60)
    assert not is_saturated([{'query': 'a', 'count': 59}, {'query': 'b', 'count': 20}], 60)
    assert not is_saturated([], 60)


def test_build_leads_maps_place_fields():
    leads = build_leads(
        [place('Smith Farm', 43.55, -80.3, external_id='abc')],
        depth=2, region='Wellington', province='Ontario',
    )
    assert leads == [{
        'name': 'Smith Farm',
        'type': 'farm',
        'address': '1 Road, Guelph, ON N1H 1A1, Canada',
        'city': 'Guelph',
        'region': 'Wellington',
        'province': 'Ontario',
        'place_id': 'abc',
        'latitude': 43.55,
        'longitude': -80.3,
        'source': 'google_places',
        'source_detail': 'Discovery grid cell [depth=2]',
    }]


def test_extract_city():
    assert extract_city('123 Main St, Guelph, ON N1H 1A1, Canada') == 'Guelph'
    assert extract_city('Guelph, Canada') == 'Guelph'
    assert extract_city('Guelph') == 'Guelph'
    assert extract_city('') == ''


def test_infer_lead_type():
    assert infer_lead_type('Guelph Farmers Market', []) == 'farmers_market'
    assert infer_lead_type('Roadside Corn', []) == 'roadside_stand'
    assert infer_lead_type('Apple Orchard', []) == 'farm'
    assert infer_lead_type('Bulk Barn', ['store']) == 'retail_store'


def test_parse_place():
    parsed = parse_place({
        'place_id': 'xyz',
        'name': 'Smith Orchard',
        'formatted_address': '5 Line Rd, Milton, ON L9T 2X5, Canada',
        'geometry': {'location': {'lat': 43.5, 'lng': -79.9}},
        'types': ['food', 'point_of_interest'],
    })
    assert parsed['external_id'] == 'xyz'
    assert parsed['city'] == 'Milton'
    assert (parsed['lat'], parsed['lng']) == (43.5, -79.9)
    assert parsed['type'] == 'farm'


def test_places_client_needs_api_key():
    with pytest.raises(PlacesError, match='GOOGLE_PLACES_API_KEY'):
        GooglePlacesSource(api_key='')


def test_places_client_must_be_entered():
    source = GooglePlacesSource(api_key='test-key')
    with pytest.raises(PlacesError, match='async with'):
        run(source.search('farm market', GUELPH_TILE))
