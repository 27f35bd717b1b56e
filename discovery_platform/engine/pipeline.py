# engine/pipeline.py
# ─────────────────────────────────────────────────────────────────
# ONE CELL × ALL QUERIES — SIMULTANEOUSLY
#
# Every grid query is sent to the place source at once, on one shared
# session. The round result (saturation + new leads) is only computed
# after all of them have answered.
# ─────────────────────────────────────────────────────────────────
import asyncio
from typing import List

import structlog

from .grid import contains
from .places import PlaceSource, PlacesError

log = structlog.get_logger()


def is_saturated(query_saturation: List[dict], threshold: int) -> bool:
    """A cell is saturated when any single query hit the result cap."""
    return any(q['count'] >= threshold for q in query_saturation)


async def search_cell_queries(source: PlaceSource, queries: List[str],
                              bounds: dict) -> dict:
    """
    Runs every query against the cell and merges the answers.

    query_saturation holds the raw per-query count (what the source
    returned, before any filtering) since that is what saturation is
    judged on. places holds the unique results that fall inside the cell.
    """
    async with source:
        answers = await asyncio.gather(
            *[source.search(q, bounds) for q in queries],
            return_exceptions=True,
        )

    query_saturation = []
    places = []
    seen = set()
    for query, answer in zip(queries, answers):
        if isinstance(answer, BaseException):
            log.error("cell.query.failed", query=query, error=str(answer))
            if isinstance(answer, PlacesError):
                raise answer
            raise PlacesError(f"Query '{query}' failed: {answer}") from answer

        results = answer.get('results') or []
        query_saturation.append({'query': query, 'count': len(results)})

        for place in results:
            if place.get('lat') is None or place.get('lng') is None:
                continue
            if not contains(bounds, place['lat'], place['lng']):
                continue
            key = place.get('external_id') or (place.get('name'), place['lat'], place['lng'])
            if key in seen:
                continue
            seen.add(key)
            places.append(place)

    total = sum(q['count'] for q in query_saturation)
    log.info("cell.queries.done",
             queries=len(queries),
             raw=total,
             in_bounds=len(places))
    return {
        'result_count': total,
        'query_saturation': query_saturation,
        'places': places,
    }


def build_leads(places: List[dict], depth: int, region: str = '',
                province: str = '', source_name: str = 'google_places') -> List[dict]:
    """Place results → Lead field dicts for the lead writer."""
    return [
        {
            'name': p['name'],
            'type': p.get('type') or 'farm',
            'address': p.get('address') or '',
            'city': p.get('city') or '',
            'region': region,
            'province': province,
            'place_id': p.get('external_id') or '',
            'latitude': p['lat'],
            'longitude': p['lng'],
            'source': source_name,
            'source_detail': f"Discovery grid cell [depth={depth}]",
        }
        for p in places
        if p.get('name')
    ]
