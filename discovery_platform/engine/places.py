# engine/places.py
# ─────────────────────────────────────────────────────────────────
# Entity source for cell searches: Google Places Text Search.
#
# One search = up to 3 pages × 20 results = 60 places max.
# A query that comes back with the full 60 is the saturation signal:
# there are almost certainly more places in that tile than we saw.
# ─────────────────────────────────────────────────────────────────
import asyncio
from typing import List, Optional

import aiohttp
import structlog

from .grid import search_circle

log = structlog.get_logger()

# ── CONFIGURATION ──────────────────────────────────────────────────
PLACES_TEXT_SEARCH_URL = 'https://maps.googleapis.com/maps/api/place/textsearch/json'
RESULTS_PER_PAGE = 20
DEFAULT_MAX_PAGES = 3
DEFAULT_TIMEOUT = 15
# Google rejects a next_page_token used too early with INVALID_REQUEST
PAGE_TOKEN_DELAY = 2.0
PAGE_TOKEN_RETRIES = 3


class PlacesError(Exception):
    """The place-search service failed, timed out or refused the request."""


class PlaceSource:
    """
    Interface the cell search consumes.

        async with source:
            page = await source.search(query, viewport)

    search() returns {'results': [...], 'next_page_token': str | None}
    where each result has name, address, city, lat, lng, type,
    types and external_id.
    """

    name = 'unknown'

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def search(self, query: str, viewport: dict) -> dict:
        raise NotImplementedError


# ── RESULT PARSING ─────────────────────────────────────────────────
def extract_city(formatted_address: str) -> str:
    """
    "123 Main St, Guelph, ON N1H 1A1, Canada" → "Guelph".
    Two parts → the first one; anything shorter → the whole string.
    """
    parts = [p.strip() for p in (formatted_address or '').split(',')]
    if len(parts) >= 3:
        return parts[1]
    if len(parts) == 2:
        return parts[0]
    return (formatted_address or '').strip()


def infer_lead_type(name: str, types: List[str]) -> str:
    lower = (name or '').lower()
    if 'market' in lower:
        return 'farmers_market'
    if 'roadside' in lower or 'stand' in lower:
        return 'roadside_stand'
    if any(w in lower for w in ('farm', 'orchard', 'vineyard', 'ranch', 'acres')):
        return 'farm'
    if 'store' in types or 'grocery_or_supermarket' in types:
        return 'retail_store'
    return 'farm'


def parse_place(place: dict) -> dict:
    location = (place.get('geometry') or {}).get('location') or {}
    address = place.get('formatted_address', '') or ''
    types = place.get('types') or []
    return {
        'external_id': place.get('place_id', ''),
        'name': place.get('name', ''),
        'address': address,
        'city': extract_city(address),
        'lat': location.get('lat'),
        'lng': location.get('lng'),
        'types': types,
        'type': infer_lead_type(place.get('name', ''), types),
    }


# ── GOOGLE PLACES CLIENT ───────────────────────────────────────────
class GooglePlacesSource(PlaceSource):
    """
    Radius-biased Text Search around the center of the searched tile.
    One aiohttp session per search round, shared by all of its queries.
    """

    name = 'google_places'

    def __init__(self, api_key: str, max_pages: int = DEFAULT_MAX_PAGES,
                 timeout: float = DEFAULT_TIMEOUT,
                 page_token_delay: float = PAGE_TOKEN_DELAY):
        if not api_key:
            raise PlacesError('Missing GOOGLE_PLACES_API_KEY')
        self.api_key = api_key
        self.max_pages = max(1, max_pages)
        self.timeout = timeout
        self.page_token_delay = page_token_delay
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._session is not None:
            await self._session.close()
            self._session = None
        return False

    async def _get(self, params: dict) -> dict:
        if self._session is None:
            raise PlacesError('GooglePlacesSource used outside "async with"')
        params = {**params, 'key': self.api_key}
        try:
            async with self._session.get(PLACES_TEXT_SEARCH_URL, params=params) as resp:
                if resp.status != 200:
                    raise PlacesError(f'Places Text Search failed: HTTP {resp.status}')
                return await resp.json()
        except asyncio.TimeoutError as e:
            raise PlacesError('Places Text Search timed out') from e
        except aiohttp.ClientError as e:
            raise PlacesError(f'Places Text Search failed: {e}') from e

    async def _next_page(self, token: str) -> Optional[dict]:
        await asyncio.sleep(self.page_token_delay)
        for attempt in range(PAGE_TOKEN_RETRIES + 1):
            data = await self._get({'pagetoken': token})
            status = data.get('status')
            if status == 'OK':
                return data
            if status == 'INVALID_REQUEST' and attempt < PAGE_TOKEN_RETRIES:
                await asyncio.sleep(self.page_token_delay * (2 ** attempt))
                continue
            log.warning('places.page.dropped', status=status, attempt=attempt)
            return None
        return None

    async def search(self, query: str, viewport: dict) -> dict:
        circle = search_circle(viewport)
        data = await self._get({
            'query': query,
            'location': f"{circle['lat']},{circle['lng']}",
            'radius': int(round(circle['radius_km'] * 1000)),
        })

        status = data.get('status')
        if status == 'ZERO_RESULTS':
            return {'results': [], 'next_page_token': None}
        if status != 'OK':
            raise PlacesError(
                f"Places Text Search error: {status} - "
                f"{data.get('error_message', 'unknown')}"
            )

        raw = list(data.get('results') or [])
        token = data.get('next_page_token')
        pages = 1
        while token and pages < self.max_pages:
            page = await self._next_page(token)
            if page is None:
                break
            raw.extend(page.get('results') or [])
            token = page.get('next_page_token')
            pages += 1

        log.info('places.search',
                 query=query,
                 pages=pages,
                 found=len(raw))
        return {
            'results': [parse_place(p) for p in raw],
            'next_page_token': token,
        }
